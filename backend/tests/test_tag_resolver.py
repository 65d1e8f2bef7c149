from bookmark_importer.services.tag_resolver import (
    deduplicate_tags_case_insensitive,
    find_existing_tag,
    resolve_tag_casing,
    resolve_tags,
    tag_includes,
)


def test_existing_casing_wins():
    resolution = resolve_tags([["JavaScript", "new"]], known_tags=["javascript"])

    assert resolution.bookmark_tags == [["javascript", "new"]]
    assert resolution.new_tags == ["new"]


def test_first_seen_casing_is_canonical_for_new_tags():
    resolution = resolve_tags([["Go"], ["go", "GO"], []], known_tags=[])

    assert resolution.new_tags == ["Go"]
    assert resolution.bookmark_tags == [["Go"], ["Go"], []]


def test_blank_tags_are_dropped():
    resolution = resolve_tags([["  ", "news "]], known_tags=[])

    assert resolution.bookmark_tags == [["news"]]
    assert resolution.new_tags == ["news"]


def test_no_case_variant_of_a_new_tag_is_created_twice():
    resolution = resolve_tags([["Rust", "rust"], ["RUST", "Python"]], known_tags=["python"])

    lowered = [tag.lower() for tag in resolution.new_tags]
    assert lowered == ["rust"]


def test_helpers():
    assert tag_includes(["Alpha", "beta"], "ALPHA")
    assert not tag_includes(["Alpha"], "gamma")
    assert find_existing_tag(["Alpha", "beta"], "BETA") == "beta"
    assert find_existing_tag([], "x") is None
    assert deduplicate_tags_case_insensitive(["a", "A", "b", "a"]) == ["a", "b"]
    assert resolve_tag_casing(["READING", "misc"], ["Reading"]) == ["Reading", "misc"]
