from pydantic import BaseModel, Field


class GeoPoint(BaseModel):
    """A point on the globe in decimal degrees. Immutable and hashable."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    class Config:
        frozen = True

    @classmethod
    def from_lat_lng(cls, lat, lng) -> "GeoPoint":
        return cls(latitude=lat, longitude=lng)


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    def to_point(self) -> GeoPoint:
        return GeoPoint(latitude=self.lat, longitude=self.lng)
