from title_vetter.modules.contacts import (
    extract_emails,
    extract_from_html,
    extract_phones,
    is_contact_page,
    is_valid_clean_email,
    is_valid_phone,
    merge_bundles,
    normalize_phone,
    validate_email_domains,
)
from title_vetter.models.results import ContactBundle

HOMEPAGE = """
<html><head><title>Acme Title</title><script>var tracking = "bad@script.com";</script></head>
<body>
  <div class="footer-email">info@acmetitle.com</div>
  <a href="mailto:closings@acmetitle.com">Write to closings</a>
  <a href="tel:+1-312-782-4410">Call</a>
  <p>Office: (312) 782-4410</p>
  <p>123 Main Street, Springfield, IL 62701</p>
</body></html>
"""


def test_clean_email_rejects_scraping_artifacts():
    assert is_valid_clean_email("jane.doe@acmetitle.com")
    assert not is_valid_clean_email("123456@acmetitle.com")
    assert not is_valid_clean_email("info@acmetitle.com.com")
    assert not is_valid_clean_email("782-4410info@acmetitle.com")
    assert not is_valid_clean_email("a" * 80 + "@acmetitle.com")
    assert not is_valid_clean_email("not-an-email")


def test_phone_validity_follows_nanp_rules():
    assert is_valid_phone("(312) 782-4410")
    assert is_valid_phone("+1 312 782 4410")
    assert is_valid_phone("+44 20 7930 4832")
    assert not is_valid_phone("(012) 782-4410")
    assert not is_valid_phone("(312) 155-0198")
    assert not is_valid_phone("782-4410")
    assert not is_valid_phone("-312-782-4410")


def test_extract_emails_dedupes_case_insensitively():
    emails = extract_emails("Email: Info@AcmeTitle.com or info@acmetitle.com")
    assert emails == ["Info@AcmeTitle.com"]


def test_extract_phones_dedupes_by_digits():
    phones = extract_phones("Call (312) 782-4410 or 312.782.4410 today")
    assert phones == ["(312) 782-4410"]


def test_extract_from_html_uses_markup_and_skips_scripts():
    bundle = extract_from_html(HOMEPAGE)
    assert set(bundle.emails) == {"info@acmetitle.com", "closings@acmetitle.com"}
    assert "bad@script.com" not in bundle.emails
    assert len(bundle.phones) == 1
    assert bundle.addresses == ["123 Main Street, Springfield, IL 62701"]


def test_merge_bundles_keeps_first_seen_values():
    merged = merge_bundles(
        ContactBundle(emails=["info@acmetitle.com"], phones=["312-782-4410"]),
        ContactBundle(emails=["INFO@acmetitle.com", "closings@acmetitle.com"], phones=["+1 312 782 4410"]),
    )
    assert merged.emails == ["info@acmetitle.com", "closings@acmetitle.com"]
    assert merged.phones == ["312-782-4410"]
    assert not merged.is_empty
    assert ContactBundle().is_empty


def test_contact_page_detection_uses_path_suffix():
    assert is_contact_page("https://acmetitle.com/contact-us")
    assert is_contact_page("https://acmetitle.com/about/")
    assert is_contact_page("https://acmetitle.com/company/locations")
    assert not is_contact_page("https://acmetitle.com/services")
    assert not is_contact_page("https://acmetitle.com/contact/form")
    assert is_contact_page("https://acmetitle.com/about-us")
    assert not is_contact_page("https://acmetitle.com/about-something-else")


def test_email_domains_accept_subdomains_and_ignore_www():
    check = validate_email_domains(
        ["info@acmetitle.com", "escrow@mail.acmetitle.com", "agent@gmail.com"],
        "www.acmetitle.com",
    )
    assert check.valid == ["info@acmetitle.com", "escrow@mail.acmetitle.com"]
    assert check.invalid == ["agent@gmail.com"]
    assert check.score == 67
    assert validate_email_domains(["info@acmetitle.com"], "portal.acmetitle.com").valid == ["info@acmetitle.com"]


def test_email_domains_with_no_emails_scores_zero():
    assert validate_email_domains([], "acmetitle.com").score == 0


def test_glued_text_and_unknown_suffixes_are_rejected():
    assert not is_valid_clean_email("info@acmetitle.comstewart.com")
    assert not is_valid_clean_email("info@acmetitle.comservices")
    assert not is_valid_clean_email("info@@acmetitle.com")
    assert is_valid_clean_email("closings@acme-title.co.uk")


def test_phones_normalize_to_e164_and_dedupe_across_formats():
    assert normalize_phone("(312) 782-4410") == "+13127824410"
    assert normalize_phone("not a phone") is None
    phones = extract_phones("Main (312) 782-4410, fax +1 312 782 4410, London +44 20 7930 4832")
    assert phones == ["(312) 782-4410", "+44 20 7930 4832"]
