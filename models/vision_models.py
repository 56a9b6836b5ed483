"""Structured menu-item records returned by the vision endpoint."""

from __future__ import annotations

from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class VisionItem(BaseModel):
	"""One dish recognised on a photographed menu.

	Attributes:
		name_jp: Dish name as printed (Japanese).
		name_en: Optional English name.
		price: Price as printed or normalized by the backend.
		source: "db" when matched against the store's registered menu, "ai" when inferred.
		confidence: Optional recognition confidence in [0, 1].
	"""

	name_jp: str
	name_en: Optional[str] = None
	price: Union[int, float, str, None] = None
	description: Optional[str] = None
	ingredients: List[str] = Field(default_factory=list)
	allergens: List[str] = Field(default_factory=list)
	restrictions: List[str] = Field(default_factory=list)
	flavor_profile: Optional[str] = None
	estimated_calories: Union[int, float, str, None] = None
	tax_note: Optional[str] = None
	source: Literal["db", "ai"] = "ai"
	confidence: Optional[float] = None

	@field_validator("ingredients", "allergens", "restrictions", mode="before")
	@classmethod
	def _none_as_empty(cls, value: Any) -> Any:
		return [] if value is None else value

	def display_name(self) -> str:
		if self.name_en:
			return f"{self.name_jp} ({self.name_en})"
		return self.name_jp

	def display_price(self) -> str:
		if self.price is None or self.price == "":
			return ""
		if isinstance(self.price, (int, float)):
			return f"{int(self.price)}円"
		return str(self.price)
