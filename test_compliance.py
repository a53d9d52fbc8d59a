import compliance

DECLARED = {
    "ownershipConfirmed": True,
    "noInfringement": True,
    "accurateInformation": True,
    "agreementAccepted": True,
}


def complete_license(**extra):
    doc = {
        "engine": {"name": "Godot", "licenseType": "Free/Open Source"},
        "intellectualProperty": {"ownershipStatus": "Sole Owner", "copyrightHolder": "Jo Dev", "copyrightYear": 2025},
        "declarations": dict(DECLARED),
        "assets": [],
        "uploadedFiles": [],
        "validation": {"status": "Pending", "complianceChecks": {}},
    }
    doc.update(extra)
    return doc


def test_empty_license_is_incomplete():
    assert not compliance.is_complete({})
    assert not compliance.is_complete(None)
    assert compliance.completion_percentage({}) == 0
    assert len(compliance.missing_items({})) == 5


def test_complete_without_assets_or_files():
    doc = complete_license()
    assert compliance.is_complete(doc)
    assert compliance.missing_items(doc) == []
    # five of seven points
    assert compliance.completion_percentage(doc) == 71


def test_full_marks_with_assets_and_files():
    doc = complete_license(
        assets=[{"assetType": "Audio", "assetName": "Rain", "source": "freesound", "licenseType": "CC0 (Public Domain)"}],
        uploadedFiles=[{"id": "f1", "fileName": "license.pdf"}],
    )
    assert compliance.completion_percentage(doc) == 100


def test_one_missing_declaration_blocks_completeness():
    declarations = dict(DECLARED, agreementAccepted=False)
    doc = complete_license(declarations=declarations)
    assert not compliance.is_complete(doc)
    assert compliance.missing_items(doc) == ["One or more required declarations"]


def test_automatic_checks_flag_missing_attribution():
    doc = complete_license(assets=[
        {"assetType": "Graphics", "assetName": "Tiles", "source": "itch", "licenseType": "CC BY (Attribution)"},
    ])
    checks = compliance.automatic_checks(doc)
    assert checks["engineLicenseValid"] is True
    assert checks["assetsDocumented"] is True
    assert checks["ipOwnershipClear"] is True
    assert checks["filesAuthentic"] is False
    assert checks["attributionsComplete"] is False

    doc["assets"][0]["attribution"] = "Tiles by Someone"
    assert compliance.automatic_checks(doc)["attributionsComplete"] is True


def test_validation_summary_counts_passed_checks():
    doc = complete_license()
    doc["validation"]["complianceChecks"] = compliance.automatic_checks(doc)
    summary = compliance.validation_summary(doc)
    assert summary["status"] == "Pending"
    assert summary["totalChecks"] == 5
    assert summary["checksCompleted"] == 4
    assert summary["isComplete"] is True
