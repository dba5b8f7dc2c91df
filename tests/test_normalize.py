from training_registry.normalize import (
    course_name_key,
    course_variant,
    extract_course_code,
    extract_course_id,
    extract_t_code,
    group_base_name,
    is_q_course,
    migration_position_name,
    name_key,
    strip_course_id,
)


def test_name_key_orders_last_first():
    assert name_key("Doe, John") == "john doe"
    assert name_key("  John   DOE ") == "john doe"
    assert name_key(None) == ""
    assert name_key(float("nan")) == ""


def test_course_name_key_drops_punctuation():
    assert course_name_key("Lockout / Tagout!") == "lockout tagout"
    assert course_name_key(None) == ""


def test_course_id_extraction():
    assert extract_course_id("Forklift Safety (1001)") == "1001"
    assert extract_course_id("Forklift Safety (1001) refresher") is None
    assert extract_course_id("Ladder Safety") is None
    assert strip_course_id("Forklift Safety (1001)") == "Forklift Safety"


def test_codes():
    assert extract_t_code("SPPIVT T111 Powered Industrial Vehicle OL") == "T111"
    assert extract_t_code("Forklift Safety") is None
    assert extract_course_code("SPPIVT T111 Powered Industrial Vehicle OL") == "SPPIVT T111"
    assert extract_course_code("EHSBBPOCCWB Bloodborne Pathogens") == "EHSBBPOCCWB"
    assert extract_course_code("Forklift Safety") is None


def test_variants_and_group_base():
    assert course_variant("SPPIVT T111 Powered Industrial Vehicle OL") == "OL"
    assert course_variant("SPPIVT T111 Powered Industrial Vehicle OJT") == "OJT"
    assert course_variant("SPPIVT T111 PARENT") == "PARENT"
    assert course_variant("Forklift Safety") == "STANDARD"
    assert group_base_name("SPPIVT T111 Powered Industrial Vehicle OL (2001)") == "SPPIVT T111 Powered Industrial Vehicle"
    assert group_base_name("SPPIVT T111 Crane - Recertification") == "SPPIVT T111 Crane"


def test_q_course_and_migration_name():
    assert is_q_course("QOP Quality Operator")
    assert is_q_course("Line QCD check")
    assert not is_q_course("Forklift Safety")
    assert migration_position_name("Roe, Jane") == "MG_RoeJane"
