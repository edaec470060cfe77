import pytest

from tools.web.errors import ToolInputError
from tools.web.tool_params import (
    dedupe_urls,
    normalize_code_search_input,
    normalize_fetch_content_input,
    normalize_get_search_content_input,
    normalize_web_search_input,
)


def test_dedupe_urls_preserves_order():
    assert dedupe_urls(["a", "b", "a", "c", "b"]) == ["a", "b", "c"]


def test_web_search_requires_query_or_queries():
    with pytest.raises(ToolInputError, match="Either 'query' or 'queries' must be provided."):
        normalize_web_search_input({})
    with pytest.raises(ToolInputError):
        normalize_web_search_input({"queries": [1, None], "query": 7})


def test_web_search_prefers_queries_and_filters_non_strings():
    params = normalize_web_search_input({"query": "single", "queries": ["a", 3, "b"]})
    assert params.queries == ["a", "b"]
    assert normalize_web_search_input({"query": "x"}).queries == ["x"]


def test_web_search_drops_wrong_typed_optionals():
    params = normalize_web_search_input(
        {
            "query": "x",
            "numResults": "ten",
            "type": "fastest",
            "category": "blogs",
            "includeDomains": "github.com",
            "excludeDomains": ["b.com", 42, None],
        }
    )
    assert params.num_results is None
    assert params.type is None
    assert params.category is None
    assert params.include_domains is None
    assert params.exclude_domains == ["b.com"]


def test_web_search_accepts_valid_optionals_in_both_key_styles():
    camel = normalize_web_search_input(
        {"query": "x", "numResults": 8, "type": "deep", "category": "research paper", "includeDomains": ["a.org"]}
    )
    snake = normalize_web_search_input(
        {"query": "x", "num_results": 8, "type": "deep", "category": "research paper", "include_domains": ["a.org"]}
    )
    assert camel == snake
    assert camel.num_results == 8
    assert camel.type == "deep"
    assert camel.category == "research paper"


def test_web_search_rejects_non_finite_and_bool_numbers():
    assert normalize_web_search_input({"query": "x", "numResults": float("inf")}).num_results is None
    assert normalize_web_search_input({"query": "x", "numResults": True}).num_results is None


def test_fetch_requires_url_and_dedupes():
    with pytest.raises(ToolInputError, match="Either 'url' or 'urls' must be provided."):
        normalize_fetch_content_input({"urls": []})

    params = normalize_fetch_content_input({"urls": ["u1", "u1", "u2"], "forceClone": "yes"})
    assert params.urls == ["u1", "u2"]
    assert params.force_clone is False

    assert normalize_fetch_content_input({"url": "u", "forceClone": True}).force_clone is True


def test_code_search_requires_query_and_clamps_tokens():
    with pytest.raises(ToolInputError, match="'query' must be provided"):
        normalize_code_search_input({})
    with pytest.raises(ToolInputError):
        normalize_code_search_input({"query": "   "})

    assert normalize_code_search_input({"query": "x"}).tokens_num is None
    assert normalize_code_search_input({"query": "x", "tokensNum": 5000}).tokens_num == 5000
    assert normalize_code_search_input({"query": "x", "tokensNum": 10}).tokens_num == 50
    assert normalize_code_search_input({"query": "x", "tokensNum": 200000}).tokens_num == 100000
    assert normalize_code_search_input({"query": "x", "tokensNum": "big"}).tokens_num is None


def test_get_search_content_params():
    with pytest.raises(ToolInputError, match="responseId"):
        normalize_get_search_content_input({"query": "x"})

    params = normalize_get_search_content_input(
        {"responseId": "abc", "queryIndex": 1, "urlIndex": "2", "maxChars": 500.0, "url": 5}
    )
    assert params.response_id == "abc"
    assert params.query_index == 1
    assert params.url_index is None
    assert params.url is None
    assert params.max_chars == 500


def test_non_dict_params_are_input_errors():
    with pytest.raises(ToolInputError):
        normalize_fetch_content_input(None)
