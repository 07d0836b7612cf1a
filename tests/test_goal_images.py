from app.utils.goal_images import (
    DEFAULT_IMAGES,
    is_generated_image,
    is_static_asset,
    resolve_fallback_image,
    strip_cache_buster,
    title_hash,
    with_cache_buster,
)


def test_same_title_always_gets_the_same_image():
    first = resolve_fallback_image("Save for a house")
    second = resolve_fallback_image("Save for a house")
    assert first == second
    assert first in DEFAULT_IMAGES


def test_empty_and_missing_titles_use_the_first_image():
    assert title_hash("") == 0
    assert resolve_fallback_image("") == DEFAULT_IMAGES[0]
    assert resolve_fallback_image(None) == DEFAULT_IMAGES[0]


def test_single_character_hash_is_its_code_unit():
    assert title_hash("a") == 97
    assert resolve_fallback_image("a") == DEFAULT_IMAGES[97 % len(DEFAULT_IMAGES)]


def test_hash_wraps_to_32_bits():
    # Long titles overflow int32 many times over
    h = title_hash("Emergency fund for twelve months of living expenses")
    assert 0 <= h <= 2**31


def test_hash_uses_utf16_code_units():
    # An astral character is two UTF-16 code units (a surrogate pair)
    expected = (0xD83C * 31 + 0xDFE0)
    assert title_hash("\U0001F3E0") == expected


def test_static_and_generated_classification():
    assert is_static_asset(DEFAULT_IMAGES[3])
    assert is_static_asset("https://x.supabase.co/storage/v1/object/public/goal_images/a.webp")
    assert not is_static_asset("https://replicate.delivery/abc/out-0.webp")
    assert not is_static_asset(None)
    assert is_generated_image("https://replicate.delivery/abc/out-0.webp")
    assert not is_generated_image(DEFAULT_IMAGES[0])
    assert not is_generated_image(None)


def test_cache_buster_is_replaced_not_stacked():
    url = with_cache_buster("https://cdn.example.com/a.png?size=l", "1")
    again = with_cache_buster(url, "2")
    assert again == "https://cdn.example.com/a.png?size=l&t=2"
    assert strip_cache_buster(again) == "https://cdn.example.com/a.png?size=l"
