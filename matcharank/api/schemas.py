"""Response and request models for the HTTP API."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from matcharank.recommender.models import AlgorithmKind, Flavor, Grade, ReasonKind
from matcharank.search.facets import SuggestionType


class ItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: str
    name: str
    grade: Grade
    origin: str
    price: float
    provider: str = ""
    description: str = ""
    flavors: List[Flavor] = Field(default_factory=list)
    in_stock: bool = True
    size: str = ""
    weight_grams: int = 30


class ReasonOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: ReasonKind
    explanation: str
    confidence: float


class RecommendationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    recommendation_id: str
    item_id: str
    score: float
    reason: ReasonOut
    algorithm: AlgorithmKind
    variant_id: Optional[str] = None
    created_at: datetime


class RecommendationListResponse(BaseModel):
    """Recommendations generated for one user.

    Attributes:
        user_id: The user the recommendations were generated for.
        recommendations: Ranked recommendations, best first.
        count: Number of recommendations returned.
    """

    user_id: str = Field(..., description="User ID for recommendations")
    recommendations: List[RecommendationOut]
    count: int


class SimilarItemsResponse(BaseModel):
    item_id: str
    similar: List[ItemOut]


class SearchResponseOut(BaseModel):
    results: List[ItemOut]
    total: int
    limit: int
    offset: int
    analytics: Dict[str, Any] = Field(default_factory=dict)


class SuggestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    text: str
    type: SuggestionType
    score: float
    highlight: str


class AutocompleteResponse(BaseModel):
    query: str
    suggestions: List[SuggestionOut]


class SearchClickRequest(BaseModel):
    search_id: str
    item_id: str
    position: int = Field(..., ge=0)


class SearchPurchaseRequest(BaseModel):
    search_id: str
    item_id: str


class StatusResponse(BaseModel):
    status: str = "ok"
