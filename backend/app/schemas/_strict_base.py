"""Schema baselines shared by the registration API."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Response DTO base; rejects fields the API does not document."""

    model_config = ConfigDict(extra="forbid")


class StrictRequestModel(BaseModel):
    """
    Request DTO base.

    Unknown fields are rejected and strings are stripped. Field rules such
    as formats and allowed values are left to the domain validator so a
    caller gets the full list of problems from one request.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)
