from datetime import date

import pytest

from taxflow.errors import FunctionExecutionError
from taxflow.functions import (
    InMemoryPropertySource,
    Property,
    PropertyFunctions,
    PropertyValuation,
)
from taxflow.registry import FunctionRegistry


def _property(property_id: int, **fields) -> Property:
    data = dict(
        id=property_id,
        tenant_id=1,
        address=f"{property_id} Main St",
        city="Springfield",
        state="IL",
        zip_code="62701",
        property_type="residential",
        land_area=5000,
        building_area=2000,
        year_built=2000,
    )
    data.update(fields)
    return Property(**data)


@pytest.fixture
def registry():
    source = InMemoryPropertySource(
        properties=[_property(1), _property(2, land_area=10000, exemption=50000)]
    )
    registry = FunctionRegistry()
    PropertyFunctions(source, registry).register()
    return registry


@pytest.mark.asyncio
async def test_get_property(registry):
    result = await registry.invoke("getProperty", {"propertyId": 1})
    assert result["id"] == 1
    assert result["zipCode"] == "62701"
    assert result["landArea"] == 5000

    with pytest.raises(FunctionExecutionError) as exc:
        await registry.invoke("getProperty", {"propertyId": 99})
    assert isinstance(exc.value.original, LookupError)


@pytest.mark.asyncio
async def test_property_valuation_methods(registry):
    standard = await registry.invoke(
        "propertyValuation", {"propertyId": 1, "assessmentDate": "2024-01-15T00:00:00Z"}
    )
    # 5000 * 12 + 2000 * 150
    assert standard["marketValue"] == 360000
    assert standard["assessedValue"] == 288000
    assert standard["taxableValue"] == 288000
    assert standard["valuationMethod"] == "standard"
    assert standard["assessmentDate"] == "2024-01-15"

    cost = await registry.invoke(
        "propertyValuation",
        {"propertyId": 1, "method": "cost", "assessmentDate": "2020-06-01"},
    )
    # building depreciated 20% after 20 years
    assert cost["marketValue"] == 5000 * 12 + 2000 * 150 * 0.8

    exempt = await registry.invoke("propertyValuation", {"propertyId": 2, "method": "standard"})
    assert exempt["taxableValue"] == exempt["assessedValue"] - 50000

    with pytest.raises(FunctionExecutionError):
        await registry.invoke("propertyValuation", {"propertyId": 1, "method": "guess"})


@pytest.mark.asyncio
async def test_compare_properties_uses_latest_valuation():
    source = InMemoryPropertySource(
        properties=[_property(1), _property(2)],
        valuations=[
            PropertyValuation(
                id=1, property_id=1, tenant_id=1, valuation_method="standard",
                assessment_date=date(2022, 1, 1), assessed_value=100,
                market_value=125, taxable_value=100,
            ),
            PropertyValuation(
                id=2, property_id=1, tenant_id=1, valuation_method="standard",
                assessment_date=date(2023, 1, 1), assessed_value=300,
                market_value=375, taxable_value=300,
            ),
            PropertyValuation(
                id=3, property_id=2, tenant_id=1, valuation_method="standard",
                assessment_date=date(2023, 1, 1), assessed_value=100,
                market_value=125, taxable_value=100,
            ),
        ],
    )
    functions = PropertyFunctions(source, FunctionRegistry())

    result = await functions.compare_properties({"propertyIds": [1, 2]})
    assert result["comparisonFactor"] == "assessedValue"
    assert [row["assessedValue"] for row in result["comparisonResults"]] == [300, 100]
    assert result["comparisonResults"][0]["valuationId"] == 2
    assert result["statistics"] == {
        "count": 2,
        "min": 100,
        "max": 300,
        "average": 200,
        "median": 200,
        "total": 400,
    }

    by_area = await functions.compare_properties(
        {"propertyIds": [1], "comparisonFactor": "landArea"}
    )
    assert by_area["comparisonResults"][0]["landArea"] == 5000


@pytest.mark.asyncio
async def test_compare_properties_limits(registry):
    with pytest.raises(FunctionExecutionError, match="Maximum of 5"):
        await registry.invoke("compareProperties", {"propertyIds": [1, 2, 3, 4, 5, 6]})
    with pytest.raises(FunctionExecutionError, match="non-empty"):
        await registry.invoke("compareProperties", {"propertyIds": []})
    with pytest.raises(FunctionExecutionError, match="Unsupported comparison factor"):
        await registry.invoke(
            "compareProperties", {"propertyIds": [1], "comparisonFactor": "color"}
        )


@pytest.mark.asyncio
async def test_generate_comparison_visualization(registry):
    await registry.invoke("propertyValuation", {"propertyId": 1})
    await registry.invoke("propertyValuation", {"propertyId": 2})

    result = await registry.invoke(
        "generateComparisonVisualization",
        {"propertyIds": [1, 2], "comparisonFactors": ["marketValue", "landArea"]},
    )
    assert result["comparisonFactors"] == ["marketValue", "landArea"]
    assert result["chartData"]["labels"] == [
        "1 Main St, Springfield, IL",
        "2 Main St, Springfield, IL",
    ]
    datasets = result["chartData"]["datasets"]
    assert [d["label"] for d in datasets] == ["Market Value", "Land Area (sq ft)"]
    assert datasets[1]["data"] == [5000, 10000]
    assert result["tableData"][1]["landArea"] == 10000
    assert result["properties"][0] == {"id": 1, "label": "1 Main St, Springfield, IL"}


@pytest.mark.asyncio
async def test_visualization_reports_comparison_failure(registry):
    with pytest.raises(FunctionExecutionError, match="Failed to compare properties"):
        await registry.invoke(
            "generateComparisonVisualization", {"propertyIds": [1, 42]}
        )
