from validation import validate_name, validate_email, validate_password, sanitize_input


def test_password_policy_reports_every_missing_class():
    result = validate_password("abc")
    assert not result.is_valid
    assert "Password must be at least 8 characters long" in result.errors
    assert "Password must contain at least one uppercase letter" in result.errors
    assert "Password must contain at least one number" in result.errors
    assert any("special character" in e for e in result.errors)


def test_strong_password_passes():
    assert validate_password("Str0ng!Passw0rd").is_valid


def test_common_password_is_rejected_even_when_long_enough():
    result = validate_password("password123")
    assert "Password is too common. Please choose a more secure password" in result.errors


def test_missing_password():
    assert validate_password(None).error == "Password is required"


def test_email_format():
    assert validate_email("someone@example.com").is_valid
    assert validate_email("no-at-sign.example.com").error == "Invalid email format"
    assert validate_email("two@@example.com").error == "Invalid email format"
    assert validate_email("").error == "Email is required"


def test_name_rules():
    assert validate_name("Anne-Marie O'Neil").is_valid
    assert validate_name("A").error == "Name must be at least 2 characters"
    assert validate_name("R2D2").error == "Name can only contain letters, spaces, hyphens, and apostrophes"
    assert validate_name("   ").error == "Name is required"


def test_sanitize_strips_angle_brackets_and_whitespace():
    assert sanitize_input("  <b>hi</b> ") == "bhi/b"
    assert sanitize_input(42) == 42
    assert sanitize_input(None) is None
