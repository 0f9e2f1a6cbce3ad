from enum import Enum

class UserRole(str, Enum):
    customer = "customer"
    vendor = "vendor"
    admin = "admin"

class VendorCategory(str, Enum):
    vegetables = "vegetables"
    fruits = "fruits"
    both = "both"
    knife = "knife"
    utensils = "utensils"
    flowers = "flowers"
    barber = "barber"
    handicrafts = "handicrafts"
    streetfood = "streetfood"
    tailor = "tailor"
    laundry = "laundry"
    plumber = "plumber"
    electrician = "electrician"
    other = "other"

    @classmethod
    def parse(cls, raw) -> "VendorCategory":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.other

class FeedbackType(str, Enum):
    general = "general"
    complaint = "complaint"
    suggestion = "suggestion"
    compliment = "compliment"

class LocationPermission(str, Enum):
    granted = "granted"
    denied = "denied"
    unsupported = "unsupported"

class PublisherState(str, Enum):
    stopped = "stopped"
    starting = "starting"
    sharing = "sharing"

class ChangeType(str, Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"
