"""
keyrack — Grading Lattice Tests
================================

Covers grade inference from (vault, mech), degradation detection in both
directions, manifest requirement checks, and duration parsing.

Run with:  pytest tests/test_grades.py -v
"""

import pytest

from keyrack.core.durations import format_duration_ms, parse_duration
from keyrack.core.grades import (
    assert_grade_protected, detect_grade_change, format_grade, infer_grade,
    unmet_grade_requirements, unrecognized_grade_inputs,
)
from keyrack.core.types import (
    BadRequestError, Duration, Grade, GradeDegradationError, GradeRequirement,
    Protection,
)


# =========================================================================
# INFERENCE
# =========================================================================

class TestInferGrade:

    @pytest.mark.parametrize("vault,mech,protection,duration", [
        ("os.secure", "PERMANENT_VIA_REPLICA", Protection.ENCRYPTED, Duration.PERMANENT),
        ("os.direct", "PERMANENT_VIA_REPLICA", Protection.PLAINTEXT, Duration.PERMANENT),
        ("os.envvar", "PERMANENT_VIA_REPLICA", Protection.PLAINTEXT, Duration.PERMANENT),
        ("1password", "PERMANENT_VIA_REPLICA", Protection.ENCRYPTED, Duration.PERMANENT),
        ("aws.iam.sso", "EPHEMERAL_VIA_AWS_SSO", Protection.REFERENCE, Duration.EPHEMERAL),
        ("os.secure", "EPHEMERAL_VIA_GITHUB_APP", Protection.ENCRYPTED, Duration.EPHEMERAL),
    ])
    def test_table(self, vault, mech, protection, duration):
        assert infer_grade(vault, mech) == Grade(protection, duration)

    def test_daemon_vault_is_always_transient(self):
        grade = infer_grade("os.daemon", "PERMANENT_VIA_REPLICA")
        assert grade.duration == Duration.TRANSIENT
        assert grade.protection == Protection.ENCRYPTED

    def test_unknown_inputs_fall_back_to_weakest(self):
        grade = infer_grade("floppy.disk", "CARRIER_PIGEON")
        assert grade == Grade(Protection.PLAINTEXT, Duration.PERMANENT)

    def test_unknown_inputs_are_reported(self):
        smells = unrecognized_grade_inputs("floppy.disk", "CARRIER_PIGEON")
        assert len(smells) == 2
        assert "floppy.disk" in smells[0]
        assert "CARRIER_PIGEON" in smells[1]

    def test_known_inputs_have_no_smells(self):
        assert unrecognized_grade_inputs("os.secure", "PERMANENT_VIA_REPLICA") == []

    def test_format(self):
        assert format_grade(infer_grade("os.secure", "EPHEMERAL_VIA_AWS_SSO")) == "encrypted/ephemeral"


# =========================================================================
# CHANGE DETECTION
# =========================================================================

class TestGradeChange:

    ENCRYPTED_EPHEMERAL = Grade(Protection.ENCRYPTED, Duration.EPHEMERAL)
    PLAINTEXT_EPHEMERAL = Grade(Protection.PLAINTEXT, Duration.EPHEMERAL)
    ENCRYPTED_PERMANENT = Grade(Protection.ENCRYPTED, Duration.PERMANENT)
    REFERENCE_TRANSIENT = Grade(Protection.REFERENCE, Duration.TRANSIENT)

    def test_protection_downgrade(self):
        change = detect_grade_change(self.ENCRYPTED_EPHEMERAL, self.PLAINTEXT_EPHEMERAL)
        assert change.degrades
        assert change.reason == "protection downgrade: encrypted -> plaintext"

    def test_duration_downgrade(self):
        change = detect_grade_change(self.ENCRYPTED_EPHEMERAL, self.ENCRYPTED_PERMANENT)
        assert change.degrades
        assert change.reason == "duration downgrade: ephemeral -> permanent"

    def test_protection_reported_before_duration(self):
        weaker = Grade(Protection.PLAINTEXT, Duration.PERMANENT)
        change = detect_grade_change(self.REFERENCE_TRANSIENT, weaker)
        assert change.reason.startswith("protection downgrade")

    def test_upgrade_is_not_degradation(self):
        change = detect_grade_change(self.PLAINTEXT_EPHEMERAL, self.REFERENCE_TRANSIENT)
        assert not change.degrades
        assert "protection upgrade" in change.reason
        assert "duration upgrade" in change.reason

    def test_same_grade(self):
        change = detect_grade_change(self.ENCRYPTED_EPHEMERAL, self.ENCRYPTED_EPHEMERAL)
        assert not change.degrades
        assert change.reason is None

    def test_assert_protected_raises(self):
        with pytest.raises(GradeDegradationError, match="grade degradation forbidden"):
            assert_grade_protected(self.ENCRYPTED_EPHEMERAL, self.PLAINTEXT_EPHEMERAL)

    def test_assert_protected_allows_upgrade(self):
        assert_grade_protected(self.PLAINTEXT_EPHEMERAL, self.ENCRYPTED_EPHEMERAL)


class TestGradeRequirements:

    def test_no_requirement(self):
        assert unmet_grade_requirements(Grade(Protection.PLAINTEXT, Duration.PERMANENT), None) == []

    def test_protection_requirement_unmet(self):
        reasons = unmet_grade_requirements(
            Grade(Protection.PLAINTEXT, Duration.PERMANENT),
            GradeRequirement(protection=Protection.ENCRYPTED),
        )
        assert reasons == ["requires encrypted protection, vault provides plaintext"]

    def test_stricter_than_required_is_fine(self):
        reasons = unmet_grade_requirements(
            Grade(Protection.REFERENCE, Duration.TRANSIENT),
            GradeRequirement(protection=Protection.ENCRYPTED, duration=Duration.EPHEMERAL),
        )
        assert reasons == []

    def test_both_axes_unmet(self):
        reasons = unmet_grade_requirements(
            Grade(Protection.PLAINTEXT, Duration.PERMANENT),
            GradeRequirement(protection=Protection.ENCRYPTED, duration=Duration.EPHEMERAL),
        )
        assert len(reasons) == 2


# =========================================================================
# DURATIONS
# =========================================================================

class TestDurations:

    @pytest.mark.parametrize("text,ms", [
        ("9h", 9 * 3600 * 1000),
        ("30m", 30 * 60 * 1000),
        ("45s", 45 * 1000),
        ("0s", 0),
    ])
    def test_parse(self, text, ms):
        assert parse_duration(text) == ms

    @pytest.mark.parametrize("text", ["", "9", "h", "1d", "1.5h", "-5m", " 9h", None])
    def test_invalid(self, text):
        with pytest.raises(BadRequestError, match="invalid duration format"):
            parse_duration(text)

    def test_format(self):
        assert format_duration_ms(float('inf')) == "never"
        assert format_duration_ms(90 * 60 * 1000) == "1h30m"
        assert format_duration_ms(61 * 1000) == "1m01s"
        assert format_duration_ms(5000) == "5s"
