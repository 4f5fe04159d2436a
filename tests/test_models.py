"""Tests for query, schema and record models."""
import pytest
from pydantic import ValidationError

from supersearch.models.events import EventType, SSEEvent
from supersearch.models.query import Query, normalize_key, query_fingerprint
from supersearch.models.records import CompanyRecord, ContactRecord, identity_key, parent_key
from supersearch.models.schema import (
    CustomField,
    ResolvedSchema,
    canonical_standard_field,
    clamp_target_count,
    slugify_key,
)


class TestQuery:
    def test_fingerprint_ignores_case_and_whitespace(self):
        a = Query(text="Fintech  startups in Austin")
        b = Query(text="  fintech startups IN austin ")
        assert a.fingerprint == b.fingerprint
        assert a.text == "Fintech startups in Austin"

    def test_fingerprint_changes_with_overrides(self):
        base = query_fingerprint("ai startups")
        assert query_fingerprint("ai startups", target_count=5) != base
        assert query_fingerprint("ai startups", variant="promo") != base
        assert query_fingerprint("ai startups", variant="PROMO") == query_fingerprint(
            "ai startups", variant="promo"
        )

    def test_fingerprint_clamps_target_like_the_schema(self):
        assert Query(text="ai startups", target_count=25).fingerprint == Query(
            text="ai startups", target_count=20
        ).fingerprint
        assert query_fingerprint("ai startups", target_count=1) == query_fingerprint(
            "ai startups", target_count=5
        )
        assert query_fingerprint("ai startups", target_count=10) != query_fingerprint(
            "ai startups", target_count=20
        )
        assert query_fingerprint("ai startups", target_count=10) != query_fingerprint("ai startups")

    def test_empty_query_rejected(self):
        with pytest.raises(ValidationError):
            Query(text="   ")

    def test_query_is_immutable(self):
        query = Query(text="ctos at fintechs")
        with pytest.raises(ValidationError):
            query.text = "other"

    def test_normalize_key(self):
        assert normalize_key("  Jane   DOE ") == "jane doe"
        assert normalize_key(None) == ""


class TestSchemaHelpers:
    def test_clamp_target_count(self):
        assert clamp_target_count(2) == 5
        assert clamp_target_count(50) == 20
        assert clamp_target_count("12") == 12
        assert clamp_target_count(None) == 10
        assert clamp_target_count("lots") == 10

    def test_slugify_key(self):
        assert slugify_key("annualRevenue") == "annual_revenue"
        assert slugify_key("Annual Revenue ($)") == "annual_revenue"
        assert slugify_key("2024 funding") == "f_2024_funding"
        assert slugify_key("!!!") == ""
        assert len(slugify_key("x" * 80)) == 40

    def test_canonical_standard_field(self):
        assert canonical_standard_field("linkedinUrl") == "linkedin_url"
        assert canonical_standard_field("Job Title") == "role"
        assert canonical_standard_field("companyWebsite") == "company_website"
        assert canonical_standard_field("website") == "website"


class TestResolvedSchema:
    def test_valid_schema(self):
        schema = ResolvedSchema(
            query_type="company",
            target_count=10,
            standard_fields=("name", "website", "city"),
            custom_fields=(CustomField(key="funding_stage", label="Funding Stage"),),
        )
        assert schema.custom_keys == ("funding_stage",)
        assert schema.research_topics == ["name", "website", "city", "Funding Stage"]

    def test_schema_is_frozen(self):
        schema = ResolvedSchema(query_type="company")
        with pytest.raises(ValidationError):
            schema.target_count = 12

    def test_rejects_custom_key_shadowing_standard_field(self):
        with pytest.raises(ValidationError):
            ResolvedSchema(
                query_type="company",
                custom_fields=(CustomField(key="email", label="Email"),),
            )

    def test_rejects_field_outside_catalog(self):
        with pytest.raises(ValidationError):
            ResolvedSchema(query_type="company", standard_fields=("name", "role"))

    def test_requires_name(self):
        with pytest.raises(ValidationError):
            ResolvedSchema(query_type="contact", standard_fields=("role",))

    def test_target_count_bounds(self):
        with pytest.raises(ValidationError):
            ResolvedSchema(query_type="company", target_count=25)

    def test_custom_key_charset(self):
        with pytest.raises(ValidationError):
            CustomField(key="Funding Stage", label="Funding Stage")


class TestRecordKeys:
    def test_contact_identity_prefers_email(self):
        a = ContactRecord(name="Jane Doe", email=" Jane@Acme.com ", company="Acme")
        b = ContactRecord(name="J. Doe", email="jane@acme.com", company="Other")
        assert identity_key(a) == identity_key(b) == "email:jane@acme.com"

    def test_contact_identity_without_email_includes_parent(self):
        a = ContactRecord(name="Jane Doe", company="Acme")
        b = ContactRecord(name="jane  doe", company="Globex")
        assert identity_key(a) != identity_key(b)

    def test_company_identity_and_parent(self):
        record = CompanyRecord(name="Acme Inc")
        assert identity_key(record) == "company:acme inc"
        assert parent_key(record) is None

    def test_contact_parent_prefers_company_id(self):
        assert parent_key(ContactRecord(name="A", company="Acme", company_id=7)) == "id:7"
        assert parent_key(ContactRecord(name="A", company=" ACME ")) == "name:acme"
        assert parent_key(ContactRecord(name="A")) is None


class TestSSEEvent:
    def test_to_sse_carries_id_only_when_numbered(self):
        event = SSEEvent(EventType.PROGRESS, {"completed": 1}, id=4)
        assert event.to_sse() == {"event": "progress", "data": '{"completed": 1}', "id": "4"}
        assert "id" not in SSEEvent(EventType.PLAN).to_sse()
