from datetime import date
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, AliasChoices, ConfigDict

TransportMode = Literal["walking", "car", "flight"]
NodeKind = Literal["departure", "place", "airport", "arrival"]
AirportTier = Literal["large", "medium", "small"]
SelectionStrategy = Literal["genetic", "greedy", "round_robin", "empty"]


# ------- Core records -------
class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    lat: float = Field(..., ge=-90, le=90, validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(..., ge=-180, le=180, validation_alias=AliasChoices("lng", "longitude", "lon"))


class Place(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str
    location: Coordinate
    category: str = "other"
    member_id: str = Field(..., min_length=1, validation_alias=AliasChoices("member_id", "user_id"))
    wish_level: int = Field(..., ge=1, le=5)
    stay_duration_minutes: int = Field(120, ge=0)
    visit_date: Optional[date] = None


class Member(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "user_id", "member_id"))
    name: str = ""
    weight: float = Field(1.0, ge=0)
    can_add_places: bool = True


class OptimizationSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    fairness_weight: float = Field(0.5, ge=0, le=1)
    efficiency_weight: float = Field(0.5, ge=0, le=1)


class TripConstraints(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    trip_duration_days: int = Field(3, ge=1)
    max_places_per_day: int = Field(4, ge=1)
    fairness_threshold: float = Field(0.5, ge=0, le=1)
    preferred_transport: TransportMode = "walking"

    @property
    def max_total_places(self) -> int:
        return self.trip_duration_days * self.max_places_per_day


class NormalizedPlace(Place):
    normalized_weight: float = Field(..., ge=0.1, le=2.0)
    fairness_factor: float = Field(..., ge=0.3, le=1.5)
    relative_importance: float = Field(..., ge=0, le=1)
    normalized_wish_level: float = 1.0
    fairness_score: float = 0.0
    member_place_count: int = 1


class Airport(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    location: Coordinate
    tier: AirportTier = "large"
    country_code: Optional[str] = None


class Endpoint(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = "Departure"
    location: Coordinate
    stay_duration_minutes: int = Field(0, ge=0)


# ------- Route / schedule -------
class RouteNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: NodeKind
    id: str
    name: str
    location: Coordinate
    category: str = "other"
    stay_duration_minutes: int = 0
    member_id: Optional[str] = None
    normalized_weight: Optional[float] = None
    airport_code: Optional[str] = None
    airport_role: Optional[Literal["outbound", "inbound"]] = None
    # index of the original route pair an airport was inserted into
    original_segment_index: Optional[int] = None


class ScheduledStop(RouteNode):
    day: int
    arrival_time: str
    departure_time: str
    transport_mode: Optional[TransportMode] = None
    travel_time_from_previous: int = 0
    order_in_day: int


class DailySchedule(BaseModel):
    day: int
    scheduled_places: List[ScheduledStop] = Field(default_factory=list)
    total_travel_time: int = 0
    visit_time_minutes: int = 0


class OptimizationScore(BaseModel):
    total_score: int
    fairness_score: int
    efficiency_score: int
    feasibility_score: int
    details: Dict[str, float] = Field(default_factory=dict)
    validation_issues: List[str] = Field(default_factory=list)


# ------- Stage outputs -------
class PlaceWeight(BaseModel):
    place_id: str
    normalized_weight: float
    fairness_score: float


class NormalizedUser(BaseModel):
    member_id: str
    member_name: str = ""
    avg_wish_level: float
    place_count: int
    fairness_factor: float
    uniform_wish_levels: bool = False
    normalized_places: List[PlaceWeight] = Field(default_factory=list)


class NormalizationResult(BaseModel):
    normalized_users: List[NormalizedUser] = Field(default_factory=list)
    normalized_places: List[NormalizedPlace] = Field(default_factory=list)
    group_fairness_score: float = 1.0
    edge_cases: List[str] = Field(default_factory=list)


class SelectionResult(BaseModel):
    selected_places: List[NormalizedPlace] = Field(default_factory=list)
    fairness_score: float = 1.0
    efficiency_score: float = 1.0
    diversity_score: float = 0.0
    member_distribution: Dict[str, int] = Field(default_factory=dict)
    strategy: SelectionStrategy = "empty"
    rationale: List[str] = Field(default_factory=list)
    best_effort: bool = False


class ScheduleResult(BaseModel):
    route: List[RouteNode] = Field(default_factory=list)
    daily_schedules: List[DailySchedule] = Field(default_factory=list)
    optimization_score: OptimizationScore
    total_travel_minutes: int = 0
    total_visit_minutes: int = 0
    notes: List[str] = Field(default_factory=list)


# ------- Request models -------
class NormalizeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    trip_id: str = Field(..., min_length=1)
    places: List[Place] = Field(default_factory=list)
    members: List[Member] = Field(default_factory=list)
    settings: OptimizationSettings = OptimizationSettings()


class SelectRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    trip_id: str = Field(..., min_length=1)
    normalized_places: List[NormalizedPlace] = Field(default_factory=list)
    members: List[Member] = Field(default_factory=list)
    trip_duration_days: int = Field(3, ge=1)
    max_places_per_day: int = Field(4, ge=1)
    fairness_threshold: float = Field(0.5, ge=0, le=1)


class RouteRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    trip_id: str = Field(..., min_length=1)
    member_id: Optional[str] = None
    # normalized entries keep their weight for scoring
    selected_places: List[Union[NormalizedPlace, Place]] = Field(default_factory=list)
    departure_point: Endpoint
    arrival_point: Optional[Endpoint] = None
    constraints: TripConstraints = TripConstraints()
    search_radius_km: Optional[float] = Field(None, gt=0)


class OptimizeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    trip_id: str = Field(..., min_length=1)
    member_id: Optional[str] = None
    places: List[Place] = Field(default_factory=list)
    members: List[Member] = Field(default_factory=list)
    settings: OptimizationSettings = OptimizationSettings()
    constraints: TripConstraints = TripConstraints()
    departure_point: Endpoint
    arrival_point: Optional[Endpoint] = None
    search_radius_km: Optional[float] = Field(None, gt=0)
    force_refresh: bool = False


# ------- Response models -------
class NormalizeResponse(NormalizationResult):
    trip_id: str


class SelectResponse(SelectionResult):
    trip_id: str


class RouteResponse(ScheduleResult):
    trip_id: str


class SelectionSummary(BaseModel):
    strategy: SelectionStrategy
    rationale: List[str] = Field(default_factory=list)
    best_effort: bool = False
    member_distribution: Dict[str, int] = Field(default_factory=dict)
    selected_place_ids: List[str] = Field(default_factory=list)
    diversity_score: float = 0.0


class OptimizationResult(BaseModel):
    trip_id: str
    route: List[RouteNode] = Field(default_factory=list)
    daily_schedules: List[DailySchedule] = Field(default_factory=list)
    fairness_score: float
    efficiency_score: float
    group_fairness_score: float = 1.0
    total_travel_minutes: int = 0
    total_visit_minutes: int = 0
    optimization_score: OptimizationScore
    selection: SelectionSummary
    notes: List[str] = Field(default_factory=list)
    cached: bool = False
