from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class FlyerFile(BaseModel):
    """An uploaded flyer (maisoku) image."""
    filename: str = "flyer"
    content_type: str = "application/octet-stream"
    data: bytes = Field(repr=False)


class PrimaryInput(BaseModel):
    """Customer / agent metadata sent as the JSON `input` form field."""
    model_config = ConfigDict(extra="ignore")

    customerName: str = Field(min_length=1, description="Customer the deck is prepared for")
    agentName: str = Field(min_length=1, description="Agent in charge")
    agentPhoneNumber: Optional[str] = Field(default=None, description="Agent phone number")
    agentEmailAddress: Optional[str] = Field(default=None, description="Agent e-mail address")
    annualIncome: Optional[float] = Field(default=None, ge=0, description="Customer annual income (10k JPY)")
    downPayment: Optional[float] = Field(default=None, ge=0, description="Down payment (10k JPY)")
    interestRate: Optional[float] = Field(default=None, ge=0, description="Loan interest rate (%)")
    loanTermYears: Optional[int] = Field(default=None, ge=1, le=50, description="Loan term in years")
    propertyAddress: Optional[str] = Field(default=None, description="Property address used for access information")


class GenerationInput(PrimaryInput):
    """Validated generation request: metadata plus at least one flyer file."""
    # Dev options
    modelType: Optional[Literal["low", "middle", "high"]] = Field(default=None, description="Model tier (dev)")
    parallel: Optional[bool] = Field(default=None, description="Generate slides in parallel (dev)")

    flyerFiles: List[FlyerFile] = Field(min_length=1)
