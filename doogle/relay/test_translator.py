"""
Tests for building the upstream request from an inbound request.

Tests cover:
- Upstream host selection (public host, subdomains, edge headers)
- Edge-hop and hop-by-hop header stripping
- Forced host / accept-encoding headers
- Origin and referer rewriting
- Branded search default
- Translation failures
"""

import importlib

import pytest

from doogle import vars as settings
from doogle.relay.config import ProxyConfig
from doogle.relay.errors import TranslationError
from doogle.relay.transformer import rewrite_location
from doogle.relay.translator import (
    apply_branded_search,
    is_edge_hop_header,
    map_to_upstream_host,
    resolve_external_url,
    rewrite_public_reference,
    translate_request,
)
from doogle.utils_tests.factories import PUBLIC_HOST, UPSTREAM_HOST, make_config, make_inbound


class TestResolveExternalUrl:
    """Test recovery of the URL the client actually asked for."""

    def test_defaults_to_configured_public_url(self, proxy_config):
        """Without edge headers the configured scheme/host and raw target are used."""
        inbound = make_inbound(target="/search?q=test")

        assert resolve_external_url(inbound, proxy_config) == ("https", PUBLIC_HOST, "/search?q=test")

    def test_edge_headers_take_precedence(self, proxy_config):
        """Forwarded proto/host and the original URL override the defaults."""
        inbound = make_inbound(
            target="/__/function/index",
            headers=[
                ("x-forwarded-proto", "http"),
                ("x-forwarded-host", "images.doogle.test"),
                ("x-original-url", "/imghp?hl=en"),
            ],
        )

        assert resolve_external_url(inbound, proxy_config) == (
            "http",
            "images.doogle.test",
            "/imghp?hl=en",
        )

    def test_forwarded_lists_use_first_entry(self, proxy_config):
        """Chained edge proxies append values; the first one describes the client."""
        inbound = make_inbound(
            headers=[
                ("x-forwarded-proto", "https, http"),
                ("x-forwarded-host", "doogle.test, internal.lb"),
            ]
        )

        scheme, host, _ = resolve_external_url(inbound, proxy_config)

        assert scheme == "https"
        assert host == PUBLIC_HOST

    def test_absolute_original_url(self, proxy_config):
        """An absolute original URL is reduced to its path and query."""
        inbound = make_inbound(headers=[("x-original-url", "https://doogle.test/maps?x=1")])

        assert resolve_external_url(inbound, proxy_config)[2] == "/maps?x=1"

    def test_invalid_percent_encoding(self, proxy_config):
        """A target with a broken escape is rejected."""
        with pytest.raises(TranslationError):
            resolve_external_url(make_inbound(target="/search?q=%zz"), proxy_config)

    def test_valid_percent_encoding_kept(self, proxy_config):
        """Valid escapes pass through untouched."""
        inbound = make_inbound(target="/search?q=hello%20world&tag=foo%2Fbar")

        assert resolve_external_url(inbound, proxy_config)[2] == "/search?q=hello%20world&tag=foo%2Fbar"

    def test_invalid_forwarded_host(self, proxy_config):
        """A forwarded host with illegal characters is rejected."""
        inbound = make_inbound(headers=[("x-forwarded-host", "bad host/../")])

        with pytest.raises(TranslationError):
            resolve_external_url(inbound, proxy_config)

    def test_unsupported_forwarded_proto(self, proxy_config):
        """Only http and https are relayed."""
        inbound = make_inbound(headers=[("x-forwarded-proto", "gopher")])

        with pytest.raises(TranslationError):
            resolve_external_url(inbound, proxy_config)


class TestMapToUpstreamHost:
    """Test public -> upstream host substitution."""

    def test_public_host(self, proxy_config):
        assert map_to_upstream_host(PUBLIC_HOST, proxy_config) == UPSTREAM_HOST

    def test_subdomain_preserved(self):
        config = make_config(upstream_hostname="google.com")

        assert map_to_upstream_host("images.doogle.test", config) == "images.google.com"
        assert map_to_upstream_host("a.b.doogle.test", config) == "a.b.google.com"

    def test_foreign_host_falls_back_to_upstream(self, proxy_config):
        assert map_to_upstream_host("localhost:42222", proxy_config) == UPSTREAM_HOST

    def test_lookalike_host_not_treated_as_subdomain(self):
        config = make_config(upstream_hostname="google.com")

        assert map_to_upstream_host("notdoogle.test", config) == "google.com"

    def test_development_host_with_port(self):
        config = make_config(public_hostname="localhost:42222", public_scheme="http")

        assert map_to_upstream_host("localhost:42222", config) == UPSTREAM_HOST


class TestHeaderTranslation:
    """Test outbound header preparation."""

    def test_host_is_always_upstream(self, proxy_config):
        """The inbound host never reaches the upstream."""
        inbound = make_inbound(headers=[("host", PUBLIC_HOST), ("user-agent", "test-agent")])

        spec = translate_request(inbound, proxy_config)

        assert spec.header("host") == UPSTREAM_HOST
        assert [v for k, v in spec.headers if k == "host"] == [UPSTREAM_HOST]

    def test_edge_hop_headers_stripped(self, proxy_config):
        """Every x-forwarded-* / x-original-* header is removed, whatever its case."""
        inbound = make_inbound(
            headers=[
                ("X-Forwarded-For", "10.0.0.1"),
                ("x-forwarded-host", PUBLIC_HOST),
                ("x-forwarded-proto", "https"),
                ("X-Original-Url", "/search"),
                ("x-original-host", "doogle.test"),
                ("x-custom-header", "custom-value"),
            ]
        )

        spec = translate_request(inbound, proxy_config)

        assert not [name for name, _ in spec.headers if is_edge_hop_header(name)]
        assert spec.header("x-custom-header") == "custom-value"

    def test_hop_by_hop_headers_stripped(self, proxy_config):
        inbound = make_inbound(
            headers=[("connection", "keep-alive"), ("upgrade", "websocket"), ("te", "trailers")]
        )

        spec = translate_request(inbound, proxy_config)

        assert spec.header("connection") is None
        assert spec.header("upgrade") is None
        assert spec.header("te") is None

    def test_accept_encoding_forced_to_identity(self, proxy_config):
        inbound = make_inbound(headers=[("accept-encoding", "gzip, deflate, br")])

        spec = translate_request(inbound, proxy_config)

        assert [v for k, v in spec.headers if k == "accept-encoding"] == ["identity"]

    def test_repeated_headers_kept(self, proxy_config):
        inbound = make_inbound(headers=[("cookie", "a=1"), ("cookie", "b=2")])

        spec = translate_request(inbound, proxy_config)

        assert [v for k, v in spec.headers if k == "cookie"] == ["a=1", "b=2"]

    def test_origin_and_referer_point_upstream(self, proxy_config):
        inbound = make_inbound(
            headers=[
                ("origin", "https://doogle.test"),
                ("referer", "https://doogle.test/search?q=x"),
            ]
        )

        spec = translate_request(inbound, proxy_config)

        assert spec.header("origin") == "https://www.google.com"
        assert spec.header("referer") == "https://www.google.com/search?q=x"

    def test_foreign_referer_untouched(self, proxy_config):
        assert (
            rewrite_public_reference("https://example.org/page", proxy_config)
            == "https://example.org/page"
        )
        assert rewrite_public_reference("not a url", proxy_config) == "not a url"


class TestTranslateRequest:
    """Test the full translation."""

    def test_round_trip_target(self, proxy_config):
        """GET /search?q=test goes to the same path on the upstream."""
        spec = translate_request(make_inbound(target="/search?q=test"), proxy_config)

        assert spec.method == "GET"
        assert spec.url == "https://www.google.com/search?q=test"
        assert spec.branded_search is False

    def test_upstream_port(self):
        config = make_config(upstream_port=8443)

        spec = translate_request(make_inbound(target="/"), config)

        assert spec.url == "https://www.google.com:8443/"
        assert spec.header("host") == "www.google.com:8443"

    def test_subdomain_request(self):
        config = make_config(upstream_hostname="google.com")
        inbound = make_inbound(target="/", headers=[("x-forwarded-host", "images.doogle.test")])

        spec = translate_request(inbound, config)

        assert spec.url == "https://images.google.com/"

    def test_method_normalized(self, proxy_config):
        spec = translate_request(make_inbound(method="post", target="/gen_204"), proxy_config)

        assert spec.method == "POST"


class TestBrandedSearch:
    """Test the optional branded-search default."""

    def test_disabled_without_term(self, proxy_config):
        assert apply_branded_search("/search?q=cats", proxy_config) == ("/search?q=cats", False)

    def test_search_query_forced(self):
        config = make_config(branded_search_term="beagle")

        target, branded = apply_branded_search("/search?q=cats", config)

        assert target == "/search?q=beagle&tbm=isch"
        assert branded is True

    def test_image_search_path_case_insensitive(self):
        config = make_config(branded_search_term="beagle")

        target, branded = apply_branded_search("/IMGHP", config)

        assert target == "/IMGHP?q=beagle&tbm=isch"
        assert branded is True

    def test_other_paths_untouched(self):
        config = make_config(branded_search_term="beagle")

        assert apply_branded_search("/maps?q=x", config) == ("/maps?q=x", False)

    def test_flag_carried_on_spec(self):
        config = make_config(branded_search_term="beagle")

        spec = translate_request(make_inbound(target="/search?q=test"), config)

        assert spec.branded_search is True
        assert spec.url.endswith("/search?q=beagle&tbm=isch")


@pytest.fixture
def default_config(monkeypatch):
    """Config built from the out-of-the-box environment settings."""
    for name in (
        "PROXY_MODE",
        "PUBLIC_HOSTNAME",
        "PUBLIC_SCHEME",
        "UPSTREAM_HOSTNAME",
        "UPSTREAM_BASE_DOMAIN",
        "UPSTREAM_SCHEME",
        "UPSTREAM_PORT",
    ):
        monkeypatch.delenv(name, raising=False)
    importlib.reload(settings)
    return ProxyConfig.from_env()


class TestDefaultSubdomainRouting:
    """Subdomains map onto the base upstream domain, in both directions."""

    @pytest.mark.parametrize("public_host", ["doogle.test", "www.doogle.test"])
    def test_bare_and_www_reach_upstream_host(self, default_config, public_host):
        inbound = make_inbound(headers=[("x-forwarded-host", public_host)])

        spec = translate_request(inbound, default_config)

        assert spec.url == "https://www.google.com/"
        assert spec.header("host") == "www.google.com"

    def test_subdomain_on_base_domain(self, default_config):
        inbound = make_inbound(target="/x", headers=[("x-forwarded-host", "images.doogle.test")])

        spec = translate_request(inbound, default_config)

        assert spec.url == "https://images.google.com/x"
        assert spec.header("host") == "images.google.com"

    def test_redirect_round_trip(self, default_config):
        location = rewrite_location("https://images.google.com/x", default_config)
        public_host = location.split("/")[2]

        spec = translate_request(
            make_inbound(target="/x", headers=[("x-forwarded-host", public_host)]), default_config
        )

        assert location == "https://images.doogle.test/x"
        assert spec.url == "https://images.google.com/x"

    def test_explicit_base_domain(self):
        config = make_config(upstream_hostname="search.example.com", upstream_base_domain="example.com")

        assert map_to_upstream_host("doogle.test", config) == "search.example.com"
        assert map_to_upstream_host("search.doogle.test", config) == "search.example.com"
        assert map_to_upstream_host("maps.doogle.test", config) == "maps.example.com"


class TestIpv6Hosts:
    def test_bracketed_forwarded_host_accepted(self, proxy_config):
        inbound = make_inbound(headers=[("x-forwarded-host", "[::1]:8080")])

        assert resolve_external_url(inbound, proxy_config)[1] == "[::1]:8080"

    def test_ip_host_goes_to_upstream(self, proxy_config):
        inbound = make_inbound(headers=[("x-forwarded-host", "[2001:db8::1]")])

        assert translate_request(inbound, proxy_config).url == "https://www.google.com/"

    def test_unbracketed_ipv6_rejected(self, proxy_config):
        inbound = make_inbound(headers=[("x-forwarded-host", "::1")])

        with pytest.raises(TranslationError):
            resolve_external_url(inbound, proxy_config)
