from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Rules — soglie (in ore) per la scelta automatica della classe
# ---------------------------------------------------------------------------

class ClassificationRules(BaseModel):
    business_min_hrs: int = Field(default=10, ge=0)
    premium_min_hrs: int = Field(default=6, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _premium_not_above_business(self) -> "ClassificationRules":
        if self.premium_min_hrs > self.business_min_hrs:
            raise ValueError(
                "premium_min_hrs must not be greater than business_min_hrs"
            )
        return self


# ---------------------------------------------------------------------------
# Attendees — una città di partenza con il numero di viaggiatori
# ---------------------------------------------------------------------------

class Attendee(BaseModel):
    city: str = Field(min_length=1)
    travelers: int = Field(default=1, ge=1)

    model_config = {"frozen": True, "str_strip_whitespace": True}


# ---------------------------------------------------------------------------
# Trip document (conf.yml)
# ---------------------------------------------------------------------------

class TripConfig(BaseModel):
    rules: ClassificationRules = Field(default_factory=ClassificationRules)
    attendees: list[Attendee] = Field(min_length=1)

    @field_validator("attendees", mode="before")
    @classmethod
    def _attendees_from_mapping(cls, v):
        # Accetta sia una lista sia la forma breve "attendees: {NYC: 1, LAX: 2}"
        if isinstance(v, dict):
            return [{"city": city, "travelers": travelers} for city, travelers in v.items()]
        return v
