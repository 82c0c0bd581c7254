"""Caddyfile generation."""

SECURITY_HEADERS = [
    ("X-Content-Type-Options", "nosniff"),
    ("X-Frame-Options", "DENY"),
    ("X-XSS-Protection", "1; mode=block"),
    ("Referrer-Policy", "strict-origin-when-cross-origin"),
]

ACME_CHALLENGE_PATH = "/.well-known/acme-challenge/*"
DEFAULT_SITE = ":80"


def _upstream_list(route):
    return " ".join(str(u) for u in route.upstreams)


def _site_lines(proxy):
    lines = []

    if proxy.basic_auth:
        user, password_hash = proxy.basic_auth
        lines += [
            f"@protected not path {ACME_CHALLENGE_PATH}",
            "basic_auth @protected {",
            f"\t{user} {password_hash}",
            "}",
            "",
        ]

    for route in proxy.routes:
        if route.whole_domain:
            lines.append(f"reverse_proxy {_upstream_list(route)}")
        else:
            # handle_path strips the prefix before forwarding
            lines += [
                f"handle_path {route.path} {{",
                f"\treverse_proxy {_upstream_list(route)}",
                "}",
            ]
        lines.append("")

    if proxy.gzip:
        lines.append("encode gzip")

    if proxy.security_headers:
        lines.append("header {")
        lines += [f'\t{name} "{value}"' for name, value in SECURITY_HEADERS]
        lines.append("\t-Server")
        lines.append("}")

    if proxy.tls_internal:
        lines.append("tls internal")

    lines += list(proxy.extra_directives)

    while lines and lines[-1] == "":
        lines.pop()
    return lines


def generate_caddyfile(proxy, site=None) -> str:
    """Render the Caddyfile for *proxy* served at *site* (domain or address).

    Falls back to the descriptor's own domain, then to plain HTTP on :80.
    """
    site = site or proxy.domain or DEFAULT_SITE
    out = []
    if proxy.tls_email:
        out += ["{", f"\temail {proxy.tls_email}", "}", ""]
    out.append(f"{site} {{")
    out += [f"\t{line}" if line else "" for line in _site_lines(proxy)]
    out.append("}")
    return "\n".join(out) + "\n"
