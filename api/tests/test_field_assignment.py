import json
from datetime import date

import pytest

from app.field_assignment import (
    LOCATION_UNAVAILABLE,
    RULE_EMAIL,
    RULE_FALLBACK,
    RULE_SCHEMA_SLOT,
    RULE_SIGNING_ORDER,
    SKIP_BAD_SIGNATURE,
    SKIP_NO_SIGNATURE,
    SKIP_UNRESOLVED,
    EmptySchemaError,
    FieldAssignmentError,
    collect_slot_ids,
    field_slot_id,
    fields_for_signer,
    flatten_schemas,
    format_location,
    long_date,
    page_schemas,
    parse_signature_data,
    populate_inputs,
    resolve_signer,
)

TODAY = date(2025, 1, 5)
SIG_A = "data:image/png;base64,AAA"
SIG_B = "data:image/png;base64,BBB"
SIG_C = "data:image/png;base64,CCC"


def make_signer(id_, order, email, name, status="signed", slot=None, signature=None):
    return {
        "id": id_,
        "signer_email": email,
        "signer_name": name,
        "signing_order": order,
        "status": status,
        "schema_signer_id": slot,
        "signature_data": signature,
    }


@pytest.fixture
def signers():
    return [
        make_signer(1, 1, "alice@x.com", "Alice", slot="s1",
                    signature=json.dumps({"signature_image": SIG_A, "signer_name": "Alice A."})),
        make_signer(2, 2, "bob@x.com", "Bob", slot="s2",
                    signature={"signature_image": SIG_B, "signer_name": "Bob B."}),
        make_signer(3, 3, "carol@x.com", "Carol", slot="s3",
                    signature={"signature_image": SIG_C, "signer_name": "Carol C."}),
    ]


def test_three_field_scenario():
    fields = [
        {"name": "sig1", "type": "signature", "signerId": "s1"},
        {"name": "name1", "type": "name", "signerId": "s1"},
        {"name": "date1", "type": "date"},
    ]
    signers = [
        {
            "id": 10,
            "schema_signer_id": "s1",
            "signer_name": "Alice",
            "signer_email": "alice@x.com",
            "signing_order": 1,
            "status": "signed",
            "signature_data": {"signature_image": "data:...AAA"},
        }
    ]
    result = populate_inputs(fields, signers, today=TODAY)
    assert result.inputs == {"sig1": "data:...AAA", "name1": "Alice", "date1": "January 5, 2025"}
    assert result.populated == 3
    assert result.skipped == {}


def test_schema_slot_wins_over_other_hints(signers):
    field = {
        "name": "sig",
        "type": "signature",
        "signerId": "s2",
        "signer_email": "alice@x.com",
        "signer_id": 3,
        "signing_order": 1,
    }
    target, rule = resolve_signer(field, signers)
    assert target["id"] == 2
    assert rule == RULE_SCHEMA_SLOT
    assert populate_inputs([field], signers, today=TODAY).inputs == {"sig": SIG_B}


def test_nested_original_config_slot(signers):
    field = {"name": "sig", "type": "signature", "properties": {"_originalConfig": {"signerId": "s3"}}}
    assert field_slot_id(field) == "s3"
    target, rule = resolve_signer(field, signers)
    assert target["id"] == 3
    assert rule == RULE_SCHEMA_SLOT


def test_email_then_signer_id_then_order(signers):
    by_email, rule = resolve_signer({"name": "f", "signer_email": "carol@x.com"}, signers)
    assert by_email["id"] == 3 and rule == RULE_EMAIL

    by_id, _ = resolve_signer({"name": "f", "signer_id": "2"}, signers)
    assert by_id["id"] == 2

    by_order, rule = resolve_signer({"name": "f", "signing_order": "3"}, signers)
    assert by_order["id"] == 3 and rule == RULE_SIGNING_ORDER


def test_unknown_slot_falls_through_to_email(signers):
    field = {"name": "f", "type": "email", "signerId": "missing", "signer_email": "bob@x.com"}
    assert populate_inputs([field], signers, today=TODAY).inputs == {"f": "bob@x.com"}


def test_email_match_is_case_sensitive(signers):
    target, _ = resolve_signer({"name": "f", "signer_email": "Alice@x.com"}, signers)
    assert target is None


def test_unmatched_email_hint_does_not_fall_back(signers):
    fields = [
        {"name": "bob_sig", "type": "signature", "signer_email": "bob@elsewhere.com"},
        {"name": "free", "type": "signature"},
    ]
    result = populate_inputs(fields, signers, today=TODAY)
    assert "bob_sig" not in result.inputs
    assert result.skipped == {"bob_sig": SKIP_UNRESOLVED}
    # the failed hint does not consume a round-robin turn
    assert result.inputs["free"] == SIG_A


def test_round_robin_over_signed_signers_by_order():
    signers = [
        make_signer(1, 2, "b@x.com", "B", signature={"signature_image": SIG_B}),
        make_signer(2, 1, "a@x.com", "A", signature={"signature_image": SIG_A}),
        make_signer(3, 3, "c@x.com", "C", status="viewed", signature={"signature_image": SIG_C}),
    ]
    fields = [{"name": f"sig{i}", "type": "signature"} for i in range(5)]
    result = populate_inputs(fields, signers, today=TODAY)
    assert result.inputs == {
        "sig0": SIG_A,
        "sig1": SIG_B,
        "sig2": SIG_A,
        "sig3": SIG_B,
        "sig4": SIG_A,
    }
    assert set(result.assignments.values()) == {RULE_FALLBACK}


def test_hinted_fields_do_not_advance_round_robin(signers):
    fields = [
        {"name": "a", "type": "signature"},
        {"name": "hinted", "type": "signature", "signerId": "s3"},
        {"name": "b", "type": "signature"},
    ]
    inputs = populate_inputs(fields, signers, today=TODAY).inputs
    assert inputs == {"a": SIG_A, "hinted": SIG_C, "b": SIG_B}


def test_unhinted_fields_absent_without_signed_signers():
    signers = [
        make_signer(1, 1, "a@x.com", "A", status="viewed", signature={"signature_image": SIG_A}),
        make_signer(2, 2, "b@x.com", "B", status="initiated"),
    ]
    fields = [{"name": "sig", "type": "signature"}, {"name": "when", "type": "date"}]
    result = populate_inputs(fields, signers, today=TODAY)
    assert result.inputs == {}
    assert result.skipped == {"sig": SKIP_UNRESOLVED, "when": SKIP_UNRESOLVED}
    assert result.summary() == {
        "populated_fields": 0,
        "total_fields": 2,
        "skipped_fields": {"sig": SKIP_UNRESOLVED, "when": SKIP_UNRESOLVED},
    }


def test_malformed_signature_data_skips_only_that_field(signers):
    signers[1]["signature_data"] = "not-json"
    fields = [
        {"name": "bob_sig", "type": "signature", "signerId": "s2"},
        {"name": "alice_sig", "type": "signature", "signerId": "s1"},
        {"name": "carol_name", "type": "full_name", "signerId": "s3"},
    ]
    result = populate_inputs(fields, signers, today=TODAY)
    assert result.inputs == {"alice_sig": SIG_A, "carol_name": "Carol C."}
    assert result.skipped == {"bob_sig": SKIP_BAD_SIGNATURE}


def test_missing_signature_data_is_skipped(signers):
    signers[2]["signature_data"] = None
    result = populate_inputs([{"name": "c", "type": "signature", "signerId": "s3"}], signers, today=TODAY)
    assert result.inputs == {}
    assert result.skipped == {"c": SKIP_NO_SIGNATURE}


def test_unrecognized_type_passes_name_through(signers):
    fields = [{"name": "widget1", "type": "custom_widget", "signerId": "s1"}]
    assert populate_inputs(fields, signers, today=TODAY).inputs == {"widget1": "widget1"}


def test_value_extraction_per_type():
    signer = make_signer(
        7, 1, "dana@x.com", "Dana Record",
        slot="s1",
        signature={
            "signature": SIG_A,
            "profile_location": {"district": "Koramangala", "state": "Karnataka"},
        },
    )
    fields = [
        {"name": "sig", "type": "signature", "signerId": "s1"},
        {"name": "txt", "type": "text", "signerId": "s1"},
        {"name": "when", "type": "datetime", "signerId": "s1"},
        {"name": "where", "type": "location", "signerId": "s1"},
        {"name": "st", "type": "state", "signerId": "s1"},
        {"name": "dist", "type": "district", "signerId": "s1"},
        {"name": "mail", "type": "email", "signerId": "s1"},
    ]
    inputs = populate_inputs(fields, [signer], today=TODAY).inputs
    assert inputs == {
        "sig": SIG_A,
        "txt": "Dana Record",
        "when": "January 5, 2025",
        "where": "Koramangala, Karnataka",
        "st": "Karnataka",
        "dist": "Koramangala",
        "mail": "dana@x.com",
    }


def test_empty_values_are_still_emitted():
    signer = make_signer(1, 1, "e@x.com", "", slot="s1", signature={})
    fields = [
        {"name": "sig", "type": "signature", "signerId": "s1"},
        {"name": "nm", "type": "name", "signerId": "s1"},
        {"name": "where", "type": "location", "signerId": "s1"},
        {"name": "st", "type": "state", "signerId": "s1"},
    ]
    inputs = populate_inputs(fields, [signer], today=TODAY).inputs
    assert inputs == {"sig": "", "nm": "", "where": LOCATION_UNAVAILABLE, "st": ""}


def test_format_location():
    assert format_location({"district": "Koramangala", "state": "Karnataka"}) == "Koramangala, Karnataka"
    assert format_location({"district": "", "state": "Karnataka"}) == "Karnataka"
    assert format_location(None) == LOCATION_UNAVAILABLE
    assert format_location({}) == LOCATION_UNAVAILABLE


def test_long_date():
    assert long_date(date(2025, 1, 5)) == "January 5, 2025"
    assert long_date(date(2024, 12, 31)) == "December 31, 2024"


def test_idempotent_with_pinned_date(signers):
    fields = [
        {"name": "sig1", "type": "signature", "signerId": "s1"},
        {"name": "free", "type": "text"},
        {"name": "when", "type": "date"},
    ]
    first = populate_inputs(fields, signers, today=TODAY)
    second = populate_inputs(fields, signers, today=TODAY)
    assert json.dumps(first.inputs, sort_keys=True) == json.dumps(second.inputs, sort_keys=True)


def test_date_fields_follow_generation_day(signers):
    # date values come from the clock at generation time, not from the signature
    fields = [{"name": "when", "type": "date", "signerId": "s1"}]
    earlier = populate_inputs(fields, signers, today=date(2025, 1, 5)).inputs
    later = populate_inputs(fields, signers, today=date(2025, 1, 6)).inputs
    assert earlier["when"] != later["when"]


def test_empty_schema_is_rejected(signers):
    with pytest.raises(EmptySchemaError):
        populate_inputs([], signers)
    with pytest.raises(FieldAssignmentError):
        populate_inputs(None, signers)


def test_parse_signature_data_shapes():
    assert parse_signature_data({"signature_image": SIG_A}).signature_image == SIG_A
    assert parse_signature_data(json.dumps({"signer_name": "Zed"})).signer_name == "Zed"
    assert parse_signature_data(b'{"signature": "x"}').signature == "x"
    assert parse_signature_data("not-json") is None
    assert parse_signature_data("[1, 2]") is None
    assert parse_signature_data(42) is None


def test_flatten_and_collect_slots():
    schemas = [
        [
            {"name": "sig_b", "type": "signature", "signerId": "signer_b"},
            {"name": "date", "type": "date", "signerId": "signer_c"},
        ],
        [
            {"name": "sig_a", "type": "signature", "signerId": "signer_a"},
            {"name": "txt_a", "type": "text", "properties": {"_originalConfig": {"signerId": "signer_a"}}},
        ],
    ]
    fields = flatten_schemas(schemas)
    assert [f["name"] for f in fields] == ["sig_b", "date", "sig_a", "txt_a"]
    assert collect_slot_ids(fields) == ["signer_a", "signer_b"]


def test_fields_for_signer(signers):
    fields = [
        {"name": "alice", "type": "signature", "signerId": "s1"},
        {"name": "bob", "type": "signature", "signerId": "s2"},
        {"name": "anyone", "type": "date"},
        {"name": "nobody", "type": "signature", "signer_email": "zed@x.com"},
    ]
    assert [f["name"] for f in fields_for_signer(fields, signers, 2)] == ["bob", "anyone"]


def test_flat_schema_list_is_one_page():
    flat = [
        {"name": "sig_a", "type": "signature", "signerId": "signer_a"},
        {"name": "when", "type": "date"},
    ]
    assert page_schemas(flat) == [flat]
    assert [f["name"] for f in flatten_schemas(flat)] == ["sig_a", "when"]
    assert page_schemas([[flat[0]], [], [flat[1]]]) == [[flat[0]], [], [flat[1]]]
    assert page_schemas(None) == []


def test_signing_order_hint_must_be_integral(signers):
    unresolved, rule = resolve_signer({"name": "f", "signing_order": 1.5}, signers)
    assert unresolved is None and rule is None
    by_float, _ = resolve_signer({"name": "f", "signing_order": 2.0}, signers)
    assert by_float["id"] == 2
    by_text, _ = resolve_signer({"name": "f", "signing_order": " 2 "}, signers)
    assert by_text["id"] == 2

    result = populate_inputs(
        [{"name": "half", "type": "signature", "signing_order": 1.5}], signers, today=TODAY
    )
    assert result.inputs == {}
    assert result.skipped == {"half": SKIP_UNRESOLVED}


def test_null_signing_order_is_not_a_hint(signers):
    fields = [
        {"name": "first", "type": "signature", "signing_order": None},
        {"name": "second", "type": "signature", "signing_order": None, "signer_email": ""},
    ]
    result = populate_inputs(fields, signers, today=TODAY)
    assert result.inputs == {"first": SIG_A, "second": SIG_B}
    assert set(result.assignments.values()) == {RULE_FALLBACK}
