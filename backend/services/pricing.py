"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  DH CRM - Pricing Aggregator                                                 ║
║                                                                              ║
║  Calcule les totaux d'un devis à partir des lignes de service:               ║
║    ligne = {serviceGroup, service, volume, packages[]}                       ║
║    package = {packageName, unitPrice, totalPrice, isSelected}                ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - totalPrice = unitPrice × volume après CHAQUE modification                 ║
║  - totalAmount = Σ totalPrice des packages sélectionnés                      ║
║  - grandTotal = totalAmount + taxAmount (montant absolu, pas un %)           ║
║  - packageName comparé sans tenir compte de la casse, partout                ║
║  - un volume saisi à la main est "pinned": le survey ne l'écrase plus        ║
║                                                                              ║
║  Le client fait le même calcul; le serveur le refait toujours.               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from services.errors import NotFoundError, ValidationError

logger = logging.getLogger("pricing")

DEFAULT_VOLUME = 1.0


def package_key(name: Optional[str]) -> str:
    return (name or "").strip().casefold()


def _number(value: Any, field: str, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number, got {value!r}")
    if number < 0:
        raise ValidationError(f"{field} cannot be negative")
    return number


def normalize_package(pkg: dict, volume: float) -> dict:
    # "servicePricing" est l'ancien nom du prix unitaire côté formulaire
    unit_price = _number(pkg.get("unitPrice", pkg.get("servicePricing")), "unitPrice")
    normalized = {k: v for k, v in pkg.items() if k != "servicePricing"}
    normalized["packageName"] = (pkg.get("packageName") or "").strip()
    normalized["unitPrice"] = unit_price
    normalized["totalPrice"] = unit_price * volume
    selected = pkg.get("isSelected")
    normalized["isSelected"] = unit_price > 0 if selected is None else bool(selected)
    if not normalized["packageName"]:
        raise ValidationError("packageName is required")
    return normalized


def normalize_line(line: dict, default_volume: float = DEFAULT_VOLUME) -> dict:
    volume = _number(line.get("volume"), "volume", default_volume)
    normalized = dict(line)
    normalized["serviceGroup"] = (line.get("serviceGroup") or "").strip()
    normalized["service"] = (line.get("service") or "").strip()
    normalized["volume"] = volume
    normalized["volumePinned"] = bool(line.get("volumePinned", False))
    normalized["packages"] = [normalize_package(p, volume) for p in line.get("packages") or []]
    return normalized


class QuotationPricing:
    """
    Opérations de calcul sur la liste des lignes d'un devis.
    Travaille sur des copies: self.lines est la liste à persister.
    """

    def __init__(self, lines: Optional[List[dict]] = None, default_volume: float = DEFAULT_VOLUME):
        self.default_volume = default_volume
        self.lines = [normalize_line(line, default_volume) for line in lines or []]

    def _line(self, line_index: int) -> dict:
        if line_index < 0 or line_index >= len(self.lines):
            raise NotFoundError(f"Line {line_index} not found")
        return self.lines[line_index]

    @staticmethod
    def _find_package(line: dict, package_name: str) -> Optional[dict]:
        key = package_key(package_name)
        return next((p for p in line["packages"] if package_key(p["packageName"]) == key), None)

    @staticmethod
    def _recompute_line(line: dict):
        for pkg in line["packages"]:
            pkg["totalPrice"] = pkg["unitPrice"] * line["volume"]

    # ---- Updates ----

    def set_unit_price(self, line_index: int, package_name: str, price: Any) -> dict:
        """Locate or create the package, then totalPrice = price × volume"""
        line = self._line(line_index)
        price = _number(price, "unitPrice")
        if not package_key(package_name):
            raise ValidationError("packageName is required")

        pkg = self._find_package(line, package_name)
        if pkg is None:
            pkg = {"packageName": package_name.strip()}
            line["packages"].append(pkg)

        pkg["unitPrice"] = price
        pkg["totalPrice"] = price * line["volume"]
        pkg["isSelected"] = price > 0
        return pkg

    def set_volume(self, line_index: int, volume: Any, pin: bool = True) -> dict:
        """New volume on the line; every package keeps its unitPrice"""
        line = self._line(line_index)
        line["volume"] = _number(volume, "volume")
        if pin:
            line["volumePinned"] = True
        self._recompute_line(line)
        return line

    def apply_survey_volume(self, volume: float) -> int:
        """Survey changed: new volume on every line not pinned by hand"""
        self.default_volume = volume
        updated = 0
        for line in self.lines:
            if line["volumePinned"]:
                continue
            line["volume"] = volume
            self._recompute_line(line)
            updated += 1
        return updated

    def add_line(
        self,
        service_group: str,
        service: str,
        packages: List[dict],
        volume: Any = None,
        pinned: bool = False
    ) -> Tuple[dict, List[str]]:
        """
        Add packages for (serviceGroup, service).

        Merge policy: if the line already exists, new package names are merged
        into it and names already present are skipped (returned to the caller).
        """
        if not package_key(service):
            raise ValidationError("service is required")
        if not packages:
            raise ValidationError("At least one package is required")

        group_key, service_key = package_key(service_group), package_key(service)
        existing = next(
            (l for l in self.lines
             if package_key(l["serviceGroup"]) == group_key and package_key(l["service"]) == service_key),
            None
        )

        if existing is None:
            line = normalize_line({
                "serviceGroup": service_group,
                "service": service,
                "volume": self.default_volume if volume is None else volume,
                "volumePinned": pinned,
                "packages": [],
            })
            self.lines.append(line)
        else:
            line = existing

        skipped = []
        for pkg in packages:
            normalized = normalize_package(pkg, line["volume"])
            if self._find_package(line, normalized["packageName"]):
                skipped.append(normalized["packageName"])
                continue
            line["packages"].append(normalized)

        if skipped:
            logger.info(f"[PRICING] {service}: packages already present, skipped: {skipped}")

        return line, skipped

    def merge_lines(self, lines: List[dict]) -> List[str]:
        """
        Lignes complètes du formulaire (création / sauvegarde), même politique
        de fusion que add_line. Retourne "service: package" pour chaque doublon ignoré.
        """
        skipped = []
        for raw in lines or []:
            line, dropped = self.add_line(
                raw.get("serviceGroup") or "",
                raw.get("service") or "",
                raw.get("packages") or [],
                volume=raw.get("volume"),
                pinned=bool(raw.get("volumePinned", False))
            )
            if raw.get("id") and not line.get("id"):
                line["id"] = raw["id"]
            skipped.extend(f"{line['service']}: {name}" for name in dropped)
        return skipped

    def has_selection(self) -> bool:
        return any(pkg["isSelected"] for line in self.lines for pkg in line["packages"])

    def recompute(self):
        for line in self.lines:
            self._recompute_line(line)

    # ---- Aggregates ----

    def total_amount(self) -> float:
        return sum(
            pkg["totalPrice"]
            for line in self.lines
            for pkg in line["packages"]
            if pkg["isSelected"]
        )

    def grand_total(self, tax_amount: Any = 0) -> float:
        return self.total_amount() + _number(tax_amount, "taxAmount")

    def aggregate_by_package_name(self) -> Dict[str, float]:
        """Σ totalPrice per package name across lines (first spelling wins)"""
        names: Dict[str, str] = {}
        totals: Dict[str, float] = {}
        for line in self.lines:
            for pkg in line["packages"]:
                if not pkg["isSelected"]:
                    continue
                key = package_key(pkg["packageName"])
                name = names.setdefault(key, pkg["packageName"])
                totals[name] = totals.get(name, 0.0) + pkg["totalPrice"]
        return totals

    def package_comparison(self, headers: Optional[List[str]] = None) -> dict:
        """
        Matrice de comparaison (vue aperçu / rapport):
        pour chaque ligne, prix unitaire et total sous chaque package d'en-tête.
        """
        if headers is None:
            headers = list(self.aggregate_by_package_name().keys())

        totals = {h: 0.0 for h in headers}
        rows = []
        for line in self.lines:
            cells = {}
            for header in headers:
                pkg = self._find_package(line, header)
                if pkg and pkg["isSelected"]:
                    cells[header] = {"unitPrice": pkg["unitPrice"], "totalPrice": pkg["totalPrice"]}
                    totals[header] += pkg["totalPrice"]
                else:
                    cells[header] = {"unitPrice": 0.0, "totalPrice": 0.0}
            rows.append({
                "serviceGroup": line["serviceGroup"],
                "service": line["service"],
                "volume": line["volume"],
                "packages": cells,
            })

        return {"headers": headers, "rows": rows, "totals": totals}

    def summary(self, tax_amount: Any = 0) -> dict:
        total = self.total_amount()
        return {
            "packages": self.lines,
            "totalAmount": total,
            "taxAmount": _number(tax_amount, "taxAmount"),
            "grandTotal": total + _number(tax_amount, "taxAmount"),
        }


# ════════════════════════════════════════════════════════════════════════════
# SURVEY / OPPORTUNITY DERIVED FIELDS
# ════════════════════════════════════════════════════════════════════════════

def survey_item_metrics(item: dict) -> dict:
    """area = length × width ; volume = length × width × coefficient (jamais repris de l'input)"""
    length = _number(item.get("length"), "length")
    width = _number(item.get("width"), "width")
    coefficient = _number(item.get("coefficient"), "coefficient") or 1.0

    computed = dict(item)
    computed["length"] = length
    computed["width"] = width
    computed["coefficient"] = coefficient
    computed["area"] = length * width
    computed["volume"] = length * width * coefficient
    return computed


def survey_total_volume(items: Optional[List[dict]]) -> float:
    return sum(survey_item_metrics(item)["volume"] for item in items or [])


def volume_for_survey(survey: Optional[dict]) -> float:
    """Volume des lignes de devis: Σ volumes du survey lié, 1 sans survey"""
    if not survey:
        return DEFAULT_VOLUME
    return survey_total_volume(survey.get("surveys"))


def opportunity_value(unit_price: Any, probability: Any) -> float:
    price = _number(unit_price, "unitPrice")
    pct = _number(probability, "probability")
    if pct > 100:
        raise ValidationError("probability must be between 0 and 100")
    return price * pct / 100
