import pytest

from bookmark_importer.utils.url_utils import DedupePolicy, base_url, is_valid_http_url


@pytest.mark.parametrize(
    "url",
    ["https://example.com", "http://example.com/a?b=c", "HTTPS://Example.com/"],
)
def test_valid_http_urls(url):
    assert is_valid_http_url(url)


@pytest.mark.parametrize(
    "url",
    [None, "", "not a url", "ftp://example.com/file", "javascript:alert(1)", "https://", "/relative/path"],
)
def test_invalid_urls(url):
    assert not is_valid_http_url(url)


def test_base_url_drops_query_and_fragment():
    assert base_url("https://example.com/article?utm_source=feed#top") == "https://example.com/article"
    assert base_url("https://example.com/article") == base_url("https://example.com/article?utm=1")


def test_base_url_lowercases_scheme_and_host_only():
    assert base_url("HTTPS://Example.COM/Path/Page") == "https://example.com/Path/Page"


def test_base_url_keeps_port_and_defaults_path():
    assert base_url("http://localhost:8080") == "http://localhost:8080/"


def test_default_policy_is_strict_about_slash_and_www():
    assert base_url("https://example.com/a/") != base_url("https://example.com/a")
    assert base_url("https://www.example.com/a") != base_url("https://example.com/a")


def test_lenient_policy_folds_slash_and_www():
    policy = DedupePolicy(strip_trailing_slash=True, strip_www=True)

    assert base_url("https://www.example.com/a/", policy) == base_url("https://example.com/a", policy)
    assert base_url("https://example.com/", policy) == "https://example.com/"


def test_base_url_rejects_non_web_urls():
    assert base_url("mailto:someone@example.com") is None
    assert base_url("https://example.com:notaport/") is None
