from chat_core.domain.error_translator import ErrorCategory, classify, translate
from chat_core.domain.exceptions import ApiError


def test_rule_order_prefers_unauthorized_over_not_found():
    assert classify("Error 404: 401 unauthorized") is ErrorCategory.UNAUTHORIZED


def test_network_failures():
    assert classify("Network error: ConnectError: refused") is ErrorCategory.NETWORK_UNREACHABLE
    assert translate("TypeError: Failed to fetch") == "网络请求失败，请检查网络或代理设置。"


def test_illegal_characters_win_over_everything():
    msg = "'latin-1' codec can't encode characters; HTTP Error 401"
    assert classify(msg) is ErrorCategory.ILLEGAL_CREDENTIAL_CHARACTERS


def test_forbidden_and_api_not_enabled():
    assert classify("HTTP Error 403: forbidden") is ErrorCategory.FORBIDDEN
    assert classify("HTTP Error 403: API has not been used in project") is ErrorCategory.API_NOT_ENABLED


def test_rate_limit_vs_quota():
    assert classify("HTTP Error 429: Too Many Requests") is ErrorCategory.RATE_LIMITED
    assert classify("HTTP Error 429: Resource has been exhausted (quota)") is ErrorCategory.QUOTA_EXHAUSTED


def test_upstream_and_malformed():
    assert classify(ApiError(code="API_ERROR", message="HTTP Error 503: overloaded")) is ErrorCategory.UPSTREAM_ERROR
    assert classify("HTTP Error 400: invalid argument") is ErrorCategory.MALFORMED_REQUEST
    assert translate("HTTP Error 402: Payment Required") == "账户余额不足，请充值后重试 (402)。"


def test_unclassified_is_truncated_lowercase():
    raw = "Something WEIRD happened " + "x" * 200
    text = translate(raw)
    assert text.startswith("请求出错: something weird happened")
    assert len(text) == len("请求出错: ") + 100


def test_empty_input():
    assert classify(None) is ErrorCategory.UNCLASSIFIED
    assert translate(ValueError()) == "请求出错: valueerror"
