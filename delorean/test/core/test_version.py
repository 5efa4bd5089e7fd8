from __future__ import annotations

import pytest

from delorean.core.result import Err, Ok
from delorean.core.version import (
    OLM_TYPE_RHMI,
    OLM_TYPE_RHOAM,
    Version,
    compare,
    parse_version,
)


def _v(text: str, olm_type: str = OLM_TYPE_RHMI) -> Version:
    result = parse_version(text, olm_type)  # type: ignore[arg-type]
    assert isinstance(result, Ok), result
    return result.value


class TestParse:
    def test_final_release(self) -> None:
        v = _v("2.0.0")
        assert (v.major, v.minor, v.patch, v.build) == (2, 0, 0, "")
        assert not v.is_pre_release

    def test_pre_release(self) -> None:
        v = _v("1.12.0-rc1")
        assert v.build == "rc1"
        assert v.is_pre_release

    @pytest.mark.parametrize(
        "text",
        ["", "1.2", "1.2.3.4", "1.2.x", "1.2.3-", "1.2.3-rc1-extra", "01.2.3", "-1.2.3"],
    )
    def test_rejects_invalid(self, text: str) -> None:
        result = parse_version(text)
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_version"

    def test_str_round_trips(self) -> None:
        assert str(_v("2.1.3-er4")) == "2.1.3-er4"
        assert str(_v("2.1.3")) == "2.1.3"


class TestOrdering:
    def test_numeric_components(self) -> None:
        assert _v("1.10.0") > _v("1.9.0")
        assert _v("2.0.0") > _v("1.99.99")

    def test_pre_release_before_final(self) -> None:
        assert _v("1.4.0-rc1") < _v("1.4.0")
        assert compare(_v("1.4.0-rc1"), _v("1.4.0")) == -1
        assert compare(_v("1.4.0"), _v("1.4.0-rc1")) == 1

    def test_equal(self) -> None:
        assert compare(_v("1.4.0"), _v("1.4.0")) == 0

    def test_family_does_not_affect_equality(self) -> None:
        assert _v("1.4.0", OLM_TYPE_RHMI) == _v("1.4.0", OLM_TYPE_RHOAM)

    def test_sorted(self) -> None:
        versions = [_v("1.1.0"), _v("1.0.1"), _v("1.1.0-rc2"), _v("1.0.0")]
        assert [str(v) for v in sorted(versions)] == ["1.0.0", "1.0.1", "1.1.0-rc2", "1.1.0"]


class TestDerivedNames:
    def test_rhmi_names(self) -> None:
        v = _v("2.0.0-er4")
        assert v.tag == "v2.0.0-er4"
        assert v.release_tag == "v2.0.0-er4"
        assert v.release_branch == "release-v2.0"
        assert v.base == "2.0.0"
        assert v.major_minor == "2.0"

    def test_rhoam_names(self) -> None:
        v = _v("1.4.0", OLM_TYPE_RHOAM)
        assert v.tag == "v1.4.0"
        assert v.release_tag == "rhoam-v1.4.0"
        assert v.release_branch == "rhoam-release-v1.4"
        assert v.rc_tag_ref == "rhoam-v1.4.0-"
        assert v.prepare_release_branch == "prepare-for-release-rhoam-v1.4.0"

    def test_polarion_ids(self) -> None:
        v = _v("2.1.0-rc2")
        assert v.polarion_release_id == "v2_1_0"
        assert v.polarion_milestone_id == "v2_1_0_rc2"

    def test_patch_release_image_tag(self) -> None:
        assert _v("2.1.1").release_branch_image_tag == "2.1"
        assert _v("2.1.0").release_branch_image_tag == "master"
        assert _v("2.1.1").initial_point_release_tag == "v2.1.0"

    def test_final_drops_build(self) -> None:
        assert str(_v("2.1.0-rc2").final()) == "2.1.0"
