import pytest

from porter_sync import transforms
from porter_sync.transforms import Transform


def test_timestamp_to_date_formats_utc():
    assert transforms.timestamp_to_date(1700000000, "DateInserted", {}) == "2023-11-14 22:13:20"
    assert transforms.timestamp_to_date("1700000000", "DateInserted", {}) == "2023-11-14 22:13:20"


@pytest.mark.parametrize("value", [None, "", 0, "0", "not-a-number"])
def test_timestamp_to_date_empty_or_garbage_is_null(value):
    assert transforms.timestamp_to_date(value, "DateInserted", {}) is None


def test_long_to_ip_handles_signed_columns():
    assert transforms.long_to_ip(3232235777, "ip", {}) == "192.168.1.1"
    assert transforms.long_to_ip(-1062731519, "ip", {}) == "192.168.1.1"
    assert transforms.long_to_ip("", "ip", {}) is None
    assert transforms.long_to_ip("nope", "ip", {}) is None


def test_long_to_ip_packed_bytes():
    assert transforms.long_to_ip(b"\x0a\x00\x00\x01", "ip", {}) == "10.0.0.1"


def test_small_transforms():
    assert transforms.empty_to_zero("", "c", {}) == 0
    assert transforms.empty_to_zero(None, "c", {}) == 0
    assert transforms.empty_to_zero(7, "c", {}) == 7
    assert transforms.not_filter(1, "c", {}) == 0
    assert transforms.not_filter("0", "c", {}) == 1
    assert transforms.null_if_empty("0", "c", {}) is None
    assert transforms.null_if_empty("x", "c", {}) == "x"
    assert transforms.html_decode("Tom &amp; Jerry", "c", {}) == "Tom & Jerry"


def test_mime_from_extension():
    assert transforms.mime_from_extension("photo.jpg", "Type", {}) == "image/jpeg"
    assert transforms.mime_from_extension("blob.zzqq", "Type", {}) == transforms.DEFAULT_MIME
    assert transforms.mime_from_extension(None, "Type", {}) == transforms.DEFAULT_MIME


def test_apply_by_name_and_member():
    assert transforms.apply("empty_to_zero", "", "c", {}) == 0
    assert transforms.apply(Transform.NOT, 0, "c", {}) == 1


def test_unknown_transform_lists_known_names():
    with pytest.raises(ValueError, match="timestamp_to_date"):
        transforms.as_transform("shout")


def test_every_member_is_dispatchable():
    assert set(transforms.TRANSFORMS) == set(Transform)
