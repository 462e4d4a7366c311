import pytest
from src.services.validation_service import ValidationService
from src.models.schemas import BatchRequest, PhaseRequest, ProductSpec
from src.utils.retry import ValidationError


@pytest.fixture
def service():
    return ValidationService()


def product(**kwargs) -> ProductSpec:
    return ProductSpec(**{"product_name": "Steel Bottle", "brand": "Acme", **kwargs})


def test_parse_product(service):
    parsed = service.parse_product({"product_name": " Steel Bottle ", "brand": "Acme", "attributes": {"size": "1L"}})
    assert parsed.product_name == "Steel Bottle"
    assert parsed.attributes == {"size": "1L"}


def test_parse_product_invalid(service):
    with pytest.raises(ValidationError, match="Invalid product format"):
        service.parse_product({"product_name": "Bottle", "attributes": "not a dict"})


def test_validate_product_valid(service):
    assert service.validate_product(product(asin="b0test1234")).brand == "Acme"


@pytest.mark.parametrize("kwargs, field", [
    ({"product_name": "  ab  "}, "product_name"),
    ({"brand": ""}, "brand"),
    ({"asin": "123"}, "asin"),
])
def test_validate_product_invalid(service, kwargs, field):
    with pytest.raises(ValidationError) as exc:
        service.validate_product(product(**kwargs), index=2)
    assert exc.value.details["field"] == field
    assert exc.value.message.startswith("Product 3:")


def test_validate_phase_request(service):
    service.validate_phase_request(PhaseRequest(phase="title", category_id="c", country_id="us", product=product()))
    service.validate_phase_request(PhaseRequest(phase="backend", listing_id="listing-1"))

    with pytest.raises(ValidationError) as exc:
        service.validate_phase_request(PhaseRequest(phase="title", category_id="c", product=product()))
    assert exc.value.details["field"] == "country_id"

    with pytest.raises(ValidationError, match="description phase"):
        service.validate_phase_request(PhaseRequest(phase="description"))


def test_validate_batch_request(service):
    request = BatchRequest(category_id="c", country_id="us", products=[product(), product()])
    assert service.validate_batch_request(request, max_size=2) is request

    with pytest.raises(ValidationError, match="exceeds maximum of 1"):
        service.validate_batch_request(request, max_size=1)

    with pytest.raises(ValidationError, match="At least one product"):
        service.validate_batch_request(BatchRequest(category_id="c", country_id="us"), max_size=20)


def test_validate_asin(service):
    assert service.validate_asin("B0TEST1234")
    assert service.validate_asin(" b0test1234 ")
    assert not service.validate_asin("B0TEST12345")
    assert not service.validate_asin("B0-TEST-12")
