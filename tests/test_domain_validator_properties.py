"""
Property-based tests for domain validation module.

Uses Hypothesis for property-based testing of normalization and rejection
of malformed domain names.
"""

import string

import idna
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_monitor.domain_validator import normalize_domain, validate_domain
from domain_monitor.exceptions import ValidationError


# Labels cannot start or end with hyphen per RFC 1035
def valid_ascii_label() -> st.SearchStrategy[str]:
    """Generate valid ASCII domain labels (no leading/trailing hyphens)."""
    alphanumeric = st.sampled_from(string.ascii_lowercase + string.digits)

    return st.one_of(
        alphanumeric,
        st.builds(
            lambda first, middle, last: first + middle + last,
            alphanumeric,
            st.text(
                alphabet=string.ascii_lowercase + string.digits + "-",
                min_size=0,
                max_size=10,
            ),
            alphanumeric,
        ),
    ).filter(lambda s: len(s) <= 63 and "--" not in s[:4])  # no punycode prefix


def valid_ascii_domain() -> st.SearchStrategy[str]:
    """Generate valid ASCII domain names with one to three labels before the TLD."""
    return st.builds(
        lambda labels, tld: ".".join(labels + [tld]),
        st.lists(valid_ascii_label(), min_size=1, max_size=3),
        st.sampled_from(["com", "net", "org", "de", "io", "co.uk"]),
    )


def valid_idn_label() -> st.SearchStrategy[str]:
    """Generate valid internationalized domain labels."""
    international_chars = "äöüéèêëàâáãåæçñøœ"
    valid_chars = string.ascii_lowercase + string.digits + international_chars

    return st.builds(
        lambda first, middle, last: first + middle + last,
        st.sampled_from(international_chars),
        st.text(alphabet=valid_chars, min_size=0, max_size=8),
        st.sampled_from(valid_chars),
    )


def valid_idn_domain() -> st.SearchStrategy[str]:
    """Generate valid internationalized domain names."""
    return st.builds(
        lambda label, tld: f"{label}.{tld}",
        valid_idn_label(),
        st.sampled_from(["de", "com", "net", "org", "eu"]),
    )


def random_case(draw_bools: list[bool], text: str) -> str:
    return "".join(c.upper() if flip else c for c, flip in zip(text, draw_bools + [False] * len(text)))


class TestDomainNormalizationProperty:
    """
    Property-based tests for domain normalization.
    """

    @given(domain=valid_ascii_domain(), flips=st.lists(st.booleans(), max_size=40))
    @settings(max_examples=100)
    def test_ascii_domain_unchanged_except_case(self, domain: str, flips: list[bool]) -> None:
        """
        Property 1: ASCII domains normalize to their lowercase form.
        """
        assert normalize_domain(random_case(flips, domain)) == domain

    @given(domain=st.one_of(valid_ascii_domain(), valid_idn_domain()))
    @settings(max_examples=100)
    def test_normalization_is_idempotent(self, domain: str) -> None:
        """
        Property 2: Normalizing a canonical name returns it unchanged.
        """
        canonical = normalize_domain(domain)
        assert normalize_domain(canonical) == canonical
        assert canonical == canonical.lower()

    @given(domain=valid_idn_domain())
    @settings(max_examples=100)
    def test_idn_produces_valid_idna_encoding(self, domain: str) -> None:
        """
        Property 3: International names become their ASCII-compatible encoding.
        """
        canonical = normalize_domain(domain)

        assert canonical.isascii()
        assert canonical.split(".")[0].startswith("xn--")
        assert canonical == idna.encode(domain, uts46=True).decode("ascii")

    @given(domain=valid_ascii_domain(), padding=st.sampled_from(["", " ", "\t", "  "]))
    @settings(max_examples=50)
    def test_surrounding_whitespace_and_trailing_dot_ignored(self, domain: str, padding: str) -> None:
        assert normalize_domain(f"{padding}{domain}.{padding}") == domain

    def test_known_idn(self) -> None:
        assert normalize_domain("Bücher.de") == "xn--bcher-kva.de"
        assert normalize_domain("münchen.de") == "xn--mnchen-3ya.de"


class TestForbiddenCharactersProperty:
    """
    Property-based tests for forbidden character rejection.
    """

    FORBIDDEN_CHARS = [
        # Control characters (representative sample)
        '\x00', '\x01', '\x1f', '\x7f',
        # Whitespace
        ' ', '\t', '\n', '\r',
        # Special symbols not allowed in hostnames
        '!', '@', '#', '$', '%', '^', '&', '*', '(', ')', '+', '=',
        '[', ']', '{', '}', '|', '\\', ':', ';', '"', "'", '<', '>',
        ',', '?', '/', '`', '~', '_',
    ]

    @given(
        base_label=st.text(
            alphabet=string.ascii_lowercase + string.digits,
            min_size=1,
            max_size=10,
        ),
        forbidden_char=st.sampled_from(FORBIDDEN_CHARS),
        tld=st.sampled_from(["de", "com", "net", "org", "eu"]),
    )
    @settings(max_examples=100)
    def test_forbidden_chars_in_label_cause_rejection(
        self, base_label: str, forbidden_char: str, tld: str
    ) -> None:
        """
        Property 4: A forbidden character inside a label is rejected with code forbidden_chars.
        """
        mid = len(base_label) // 2
        label = "a" + base_label[:mid] + forbidden_char + base_label[mid:] + "a"
        domain = f"{label}.{tld}"

        result = validate_domain(domain)

        assert not result.valid
        assert result.canonical_domain is None
        assert result.error.code == "forbidden_chars"
        assert forbidden_char.lower() in result.error.details["forbidden_chars"]


class TestStructuralValidationProperty:
    """
    Property-based tests for label and length rules.
    """

    @given(label=valid_ascii_label())
    @settings(max_examples=50)
    def test_single_label_rejected(self, label: str) -> None:
        """
        Property 5: A name without a dot is not a monitorable domain.
        """
        try:
            normalize_domain(label)
            assert False, "Expected ValidationError"
        except ValidationError as e:
            assert e.code == "missing_tld"

    @given(label=valid_ascii_label(), tld=st.sampled_from(["com", "de"]))
    @settings(max_examples=50)
    def test_hyphen_at_label_edge_rejected(self, label: str, tld: str) -> None:
        for bad in (f"-{label}.{tld}", f"{label}-.{tld}"):
            result = validate_domain(bad)
            assert not result.valid
            assert result.error.code == "invalid_label"

    def test_empty_input_rejected(self) -> None:
        for raw in ("", "   ", "\t"):
            result = validate_domain(raw)
            assert result.error.code == "empty_input"

    def test_empty_label_rejected(self) -> None:
        assert validate_domain("example..com").error.code == "invalid_label"

    def test_label_too_long_rejected(self) -> None:
        assert validate_domain(f"{'a' * 64}.com").error.code == "invalid_label"
        assert validate_domain(f"{'a' * 63}.com").valid

    def test_name_too_long_rejected(self) -> None:
        name = ".".join(["a" * 60] * 5) + ".com"
        assert len(name) > 253
        assert validate_domain(name).error.code == "too_long"

    def test_details_keep_raw_input(self) -> None:
        result = validate_domain("bad name.com")
        assert result.error.details["raw_input"] == "bad name.com"
