"""Property lookup and valuation functions.

These functions are written against :class:`PropertyDataSource`, the
data-access contract the surrounding property-tax application provides.
:class:`InMemoryPropertySource` implements it for tests and local runs.
"""

from __future__ import annotations

import asyncio
import logging
import statistics
from datetime import date
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from ..errors import FunctionExecutionError
from ..registry import FunctionRegistry

logger = logging.getLogger(__name__)

MAX_COMPARED_PROPERTIES = 5

VALUATION_FACTORS = ("assessedValue", "marketValue", "taxableValue")

FACTOR_LABELS = {
    "assessedValue": "Assessed Value",
    "marketValue": "Market Value",
    "taxableValue": "Taxable Value",
    "landArea": "Land Area (sq ft)",
    "buildingArea": "Building Area (sq ft)",
}

DATASET_COLORS = [
    "rgba(75, 192, 192, 0.6)",
    "rgba(54, 162, 235, 0.6)",
    "rgba(255, 206, 86, 0.6)",
    "rgba(153, 102, 255, 0.6)",
    "rgba(255, 159, 64, 0.6)",
    "rgba(255, 99, 132, 0.6)",
    "rgba(199, 199, 199, 0.6)",
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_result(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Property(_CamelModel):
    id: int
    tenant_id: int
    address: str
    city: str
    state: str
    zip_code: str
    property_type: str
    land_area: float = 0
    building_area: float = 0
    year_built: Optional[int] = None
    exemption: float = 0


class PropertyValuation(_CamelModel):
    id: int
    property_id: int
    tenant_id: int
    valuation_method: str
    assessment_date: date
    assessed_value: float
    market_value: float
    taxable_value: float


class PropertyDataSource(Protocol):
    """Data-access contract for properties and their valuations."""

    async def get_property(self, property_id: int) -> Optional[Property]: ...

    async def list_valuations(self, property_id: int) -> List[PropertyValuation]: ...

    async def calculate_valuation(
        self, property_id: int, method: str, assessment_date: date
    ) -> PropertyValuation: ...


class InMemoryPropertySource(PropertyDataSource):
    """Property data held in local memory.

    Valuations use flat per-square-foot rates adjusted by method, with
    straight-line depreciation of the building for the cost method.
    """

    land_rate = 12.0
    building_rate = 150.0
    assessment_ratio = 0.8
    depreciation_per_year = 0.01
    method_adjustments = {
        "standard": 1.0,
        "cost": 1.0,
        "income": 0.95,
        "sales_comparison": 1.05,
    }

    def __init__(
        self,
        properties: Optional[List[Property]] = None,
        valuations: Optional[List[PropertyValuation]] = None,
    ) -> None:
        self._properties: Dict[int, Property] = {p.id: p for p in properties or []}
        self._valuations: List[PropertyValuation] = list(valuations or [])

    def add_property(self, prop: Property) -> None:
        self._properties[prop.id] = prop

    def add_valuation(self, valuation: PropertyValuation) -> None:
        self._valuations.append(valuation)

    async def get_property(self, property_id: int) -> Optional[Property]:
        return self._properties.get(property_id)

    async def list_valuations(self, property_id: int) -> List[PropertyValuation]:
        return [v for v in self._valuations if v.property_id == property_id]

    async def calculate_valuation(
        self, property_id: int, method: str, assessment_date: date
    ) -> PropertyValuation:
        prop = self._properties.get(property_id)
        if prop is None:
            raise LookupError(f"Property with ID {property_id} not found")
        if method not in self.method_adjustments:
            raise ValueError(f"Unsupported valuation method: {method}")

        building_value = prop.building_area * self.building_rate
        if method == "cost" and prop.year_built:
            age = max(assessment_date.year - prop.year_built, 0)
            building_value *= max(1 - age * self.depreciation_per_year, 0.2)
        market = (prop.land_area * self.land_rate + building_value) * (
            self.method_adjustments[method]
        )
        assessed = market * self.assessment_ratio
        valuation = PropertyValuation(
            id=len(self._valuations) + 1,
            property_id=prop.id,
            tenant_id=prop.tenant_id,
            valuation_method=method,
            assessment_date=assessment_date,
            market_value=round(market, 2),
            assessed_value=round(assessed, 2),
            taxable_value=round(max(assessed - prop.exemption, 0), 2),
        )
        self._valuations.append(valuation)
        return valuation


def _require_ids(parameters: Dict[str, Any], limit_message: str) -> List[int]:
    property_ids = parameters.get("propertyIds")
    if not isinstance(property_ids, list) or not property_ids:
        raise ValueError("'propertyIds' must be a non-empty list")
    if len(property_ids) > MAX_COMPARED_PROPERTIES:
        raise ValueError(limit_message)
    return property_ids


class PropertyFunctions:
    """Function handlers bound to a data source and a registry."""

    def __init__(self, source: PropertyDataSource, registry: FunctionRegistry) -> None:
        self.source = source
        self.registry = registry

    async def get_property(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        property_id = parameters.get("propertyId")
        prop = await self.source.get_property(property_id)
        if prop is None:
            raise LookupError(f"Property with ID {property_id} not found")
        return prop.to_result()

    async def property_valuation(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        raw_date = parameters.get("assessmentDate")
        assessment_date = date.fromisoformat(raw_date[:10]) if raw_date else date.today()
        valuation = await self.source.calculate_valuation(
            parameters.get("propertyId"),
            parameters.get("method") or "standard",
            assessment_date,
        )
        return valuation.to_result()

    async def compare_properties(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        property_ids = _require_ids(
            parameters,
            f"Maximum of {MAX_COMPARED_PROPERTIES} properties allowed for comparison",
        )
        factor = parameters.get("comparisonFactor") or "assessedValue"
        if factor not in FACTOR_LABELS:
            raise ValueError(f"Unsupported comparison factor: {factor}")
        logger.debug(f"Comparing {len(property_ids)} properties by {factor}")

        rows = []
        for property_id in property_ids:
            prop = await self.source.get_property(property_id)
            if prop is None:
                raise LookupError(f"Property with ID {property_id} not found")
            valuations = await self.source.list_valuations(property_id)
            latest = max(valuations, key=lambda v: v.assessment_date, default=None)

            if factor in VALUATION_FACTORS:
                value = latest.to_result()[factor] if latest else None
            else:
                value = prop.to_result()[factor]
            rows.append(
                {
                    "propertyId": prop.id,
                    "address": prop.address,
                    "city": prop.city,
                    "state": prop.state,
                    "zipCode": prop.zip_code,
                    "propertyType": prop.property_type,
                    factor: value,
                    "valuationId": latest.id if latest else None,
                    "valuationDate": latest.assessment_date.isoformat() if latest else None,
                }
            )

        values = [row[factor] for row in rows if row[factor] is not None]
        stats = {
            "count": len(values),
            "min": min(values) if values else None,
            "max": max(values) if values else None,
            "average": sum(values) / len(values) if values else None,
            "median": statistics.median(values) if values else None,
            "total": sum(values) if values else None,
        }
        return {
            "comparisonResults": rows,
            "statistics": stats,
            "comparisonFactor": factor,
        }

    async def generate_comparison_visualization(
        self, parameters: Dict[str, Any]
    ) -> Dict[str, Any]:
        property_ids = _require_ids(
            parameters,
            f"Maximum of {MAX_COMPARED_PROPERTIES} properties allowed for visualization",
        )
        factors = parameters.get("comparisonFactors") or list(VALUATION_FACTORS)

        async def compare(factor: str) -> Dict[str, Any]:
            try:
                return await self.registry.invoke(
                    "compareProperties",
                    {"propertyIds": property_ids, "comparisonFactor": factor},
                )
            except FunctionExecutionError as e:
                raise ValueError(
                    f"Failed to compare properties by {factor}: {e.original}"
                ) from e

        comparisons = await asyncio.gather(*(compare(f) for f in factors))

        properties = [
            {
                "id": row["propertyId"],
                "label": f"{row['address']}, {row['city']}, {row['state']}",
            }
            for row in comparisons[0]["comparisonResults"]
        ]
        datasets = [
            {
                "label": FACTOR_LABELS.get(factor, factor),
                "data": [row[factor] for row in comparison["comparisonResults"]],
                "backgroundColor": DATASET_COLORS[index % len(DATASET_COLORS)],
            }
            for index, (factor, comparison) in enumerate(zip(factors, comparisons))
        ]
        table = []
        for position, prop in enumerate(properties):
            row: Dict[str, Any] = {"propertyId": prop["id"], "propertyLabel": prop["label"]}
            for factor, comparison in zip(factors, comparisons):
                row[factor] = comparison["comparisonResults"][position][factor]
            table.append(row)

        return {
            "chartData": {"labels": [p["label"] for p in properties], "datasets": datasets},
            "tableData": table,
            "comparisonFactors": factors,
            "properties": properties,
        }

    def register(self) -> None:
        self.registry.register(
            "getProperty", self.get_property, description="Look up a property by id"
        )
        self.registry.register(
            "propertyValuation",
            self.property_valuation,
            description="Calculate a property valuation using the given method",
        )
        self.registry.register(
            "compareProperties",
            self.compare_properties,
            description="Compare up to five properties by one factor",
        )
        self.registry.register(
            "generateComparisonVisualization",
            self.generate_comparison_visualization,
            description="Chart and table data comparing properties by several factors",
        )
