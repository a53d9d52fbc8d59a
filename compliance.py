"""License completeness and the automatic compliance checks run on submission."""

from typing import Dict, Any, List, Optional

ATTRIBUTION_LICENSES = ("CC BY (Attribution)", "CC BY-SA (Share Alike)", "CC BY-NC (Non-Commercial)")
DECLARATIONS = ("ownershipConfirmed", "noInfringement", "accurateInformation", "agreementAccepted")


def _engine(license_doc: Dict[str, Any]) -> Dict[str, Any]:
    return license_doc.get("engine") or {}


def _ip(license_doc: Dict[str, Any]) -> Dict[str, Any]:
    return license_doc.get("intellectualProperty") or {}


def declarations_complete(license_doc: Dict[str, Any]) -> bool:
    declarations = license_doc.get("declarations") or {}
    return all(declarations.get(d) is True for d in DECLARATIONS)


def is_complete(license_doc: Optional[Dict[str, Any]]) -> bool:
    if not license_doc:
        return False
    engine, ip = _engine(license_doc), _ip(license_doc)
    return bool(
        engine.get("name") and engine.get("licenseType")
        and ip.get("ownershipStatus") and ip.get("copyrightHolder")
        and declarations_complete(license_doc)
    )


def completion_percentage(license_doc: Dict[str, Any]) -> int:
    """Seven points: engine name and type, assets, ownership, holder, files, declarations."""
    engine, ip = _engine(license_doc), _ip(license_doc)
    points = [
        engine.get("name"),
        engine.get("licenseType"),
        license_doc.get("assets"),
        ip.get("ownershipStatus"),
        ip.get("copyrightHolder"),
        license_doc.get("uploadedFiles"),
        declarations_complete(license_doc),
    ]
    return round(sum(1 for p in points if p) / len(points) * 100)


def missing_items(license_doc: Dict[str, Any]) -> List[str]:
    engine, ip = _engine(license_doc), _ip(license_doc)
    missing = []
    if not engine.get("name"):
        missing.append("Engine name")
    if not engine.get("licenseType"):
        missing.append("Engine license type")
    if not ip.get("ownershipStatus"):
        missing.append("Ownership status")
    if not ip.get("copyrightHolder"):
        missing.append("Copyright holder")
    if not declarations_complete(license_doc):
        missing.append("One or more required declarations")
    return missing


def automatic_checks(license_doc: Dict[str, Any]) -> Dict[str, bool]:
    engine, ip = _engine(license_doc), _ip(license_doc)
    assets = license_doc.get("assets") or []
    needs_attribution = [a for a in assets if a.get("licenseType") in ATTRIBUTION_LICENSES]
    return {
        "engineLicenseValid": bool(engine.get("name") and engine.get("licenseType")),
        # no third-party assets is acceptable
        "assetsDocumented": all(
            a.get("assetType") and a.get("assetName") and a.get("source") and a.get("licenseType") for a in assets
        ),
        "ipOwnershipClear": bool(ip.get("ownershipStatus") and ip.get("copyrightHolder") and ip.get("copyrightYear")),
        "filesAuthentic": bool(license_doc.get("uploadedFiles")),
        "attributionsComplete": all((a.get("attribution") or "").strip() for a in needs_attribution),
    }


def validation_summary(license_doc: Dict[str, Any]) -> Dict[str, Any]:
    validation = license_doc.get("validation") or {}
    checks = validation.get("complianceChecks") or {}
    return {
        "status": validation.get("status", "Pending"),
        "completionPercentage": completion_percentage(license_doc),
        "isComplete": is_complete(license_doc),
        "checksCompleted": sum(1 for v in checks.values() if v is True),
        "totalChecks": len(checks),
        "filesUploaded": len(license_doc.get("uploadedFiles") or []),
        "assetsDocumented": len(license_doc.get("assets") or []),
    }
