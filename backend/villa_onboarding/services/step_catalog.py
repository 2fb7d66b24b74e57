"""Static definition of the ten onboarding wizard steps.

Field keys are the wire keys the wizard sends for each step.  Only the
required keys gate step completion; optional keys are tracked (and can
be skipped) but never block.
"""

from dataclasses import dataclass

from villa_onboarding.errors import UnknownStep

TOTAL_STEPS = 10


@dataclass(frozen=True)
class StepDefinition:
    number: int
    key: str
    name: str
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...] = ()
    skippable: bool = False
    estimated_minutes: int = 10
    # Column on OnboardingProgress that caches this step's completion
    completion_flag: str = ""

    @property
    def field_keys(self) -> tuple[str, ...]:
        return self.required_fields + self.optional_fields


STEP_CATALOG: tuple[StepDefinition, ...] = (
    StepDefinition(
        number=1,
        key="villaInfo",
        name="Villa Information",
        required_fields=("villaName", "bedrooms"),
        optional_fields=("villaAddress", "bathrooms", "maxGuests", "propertyType", "location"),
        estimated_minutes=10,
        completion_flag="villa_info_completed",
    ),
    StepDefinition(
        number=2,
        key="ownerDetails",
        name="Owner Details",
        required_fields=("ownerFullName", "ownerEmail", "ownerPhone"),
        optional_fields=("ownerAddress",),
        estimated_minutes=8,
        completion_flag="owner_details_completed",
    ),
    StepDefinition(
        number=3,
        key="contractualDetails",
        name="Contractual Details",
        required_fields=("contractStartDate", "commissionRate"),
        optional_fields=("contractEndDate", "contractType"),
        estimated_minutes=12,
        completion_flag="contractual_details_completed",
    ),
    StepDefinition(
        number=4,
        key="bankDetails",
        name="Bank Details",
        required_fields=("accountHolderName", "bankName", "accountNumber"),
        optional_fields=("iban",),
        estimated_minutes=15,
        completion_flag="bank_details_completed",
    ),
    StepDefinition(
        number=5,
        key="otaCredentials",
        name="OTA Credentials",
        required_fields=("bookingComListed", "airbnbListed"),
        optional_fields=("tripadvisorListed",),
        skippable=True,
        estimated_minutes=20,
        completion_flag="ota_credentials_completed",
    ),
    StepDefinition(
        number=6,
        key="documents",
        name="Documents",
        required_fields=("propertyContract", "insuranceCertificate"),
        optional_fields=("utilityBills",),
        estimated_minutes=25,
        completion_flag="documents_uploaded",
    ),
    StepDefinition(
        number=7,
        key="staffConfig",
        name="Staff",
        required_fields=("staffMembers",),
        optional_fields=("positions", "salaries"),
        skippable=True,
        estimated_minutes=15,
        completion_flag="staff_config_completed",
    ),
    StepDefinition(
        number=8,
        key="facilities",
        name="Facilities",
        required_fields=("kitchenEquipment", "bathroomAmenities"),
        optional_fields=("outdoorFacilities",),
        estimated_minutes=10,
        completion_flag="facilities_completed",
    ),
    StepDefinition(
        number=9,
        key="photos",
        name="Photos",
        required_fields=("exteriorPhotos", "interiorPhotos"),
        optional_fields=("amenityPhotos",),
        estimated_minutes=30,
        completion_flag="photos_uploaded",
    ),
    StepDefinition(
        number=10,
        key="review",
        name="Review & Submit",
        required_fields=("finalReview", "termsAccepted"),
        estimated_minutes=5,
        completion_flag="review_completed",
    ),
)

_BY_NUMBER = {s.number: s for s in STEP_CATALOG}


def step_definition(step: int) -> StepDefinition:
    try:
        return _BY_NUMBER[step]
    except KeyError:
        raise UnknownStep(step) from None


def all_step_numbers() -> list[int]:
    return [s.number for s in STEP_CATALOG]


def is_field_of_step(step: int, field_key: str) -> bool:
    return field_key in step_definition(step).field_keys


def total_field_count() -> int:
    """Number of field keys across the whole wizard."""
    return sum(len(s.field_keys) for s in STEP_CATALOG)


def skippable_steps() -> list[int]:
    return [s.number for s in STEP_CATALOG if s.skippable]


def all_field_keys(step: int) -> tuple[str, ...]:
    return step_definition(step).field_keys
