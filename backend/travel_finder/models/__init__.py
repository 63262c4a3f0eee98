from travel_finder.models.schemas import Attendee, ClassificationRules, TripConfig

__all__ = ["Attendee", "ClassificationRules", "TripConfig"]
