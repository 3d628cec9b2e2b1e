"""Public areas covered by Rainwatch (Telangana districts and Hyderabad neighbourhoods)."""

from dataclasses import dataclass

from rainwatch.schemas.weather import AreaType


@dataclass(frozen=True)
class Area:
    id: str
    name: str
    type: AreaType


PUBLIC_AREAS: tuple[Area, ...] = (
    Area("dist-hyd", "Hyderabad District", AreaType.DISTRICT),
    Area("dist-rangareddy", "Ranga Reddy District", AreaType.DISTRICT),
    Area("dist-vikarabad", "Vikarabad District", AreaType.DISTRICT),
    Area("dist-sangareddy", "Sangareddy District", AreaType.DISTRICT),
    Area("dist-mahabubnagar", "Mahabubnagar District", AreaType.DISTRICT),
    Area("dist-nagarkurnool", "Nagarkurnool District", AreaType.DISTRICT),
    Area("dist-wanaparthy", "Wanaparthy District", AreaType.DISTRICT),
    Area("dist-narayanpet", "Narayanpet District", AreaType.DISTRICT),
    Area("dist-gadwal", "Jogulamba-Gadwal District", AreaType.DISTRICT),
    Area("dist-nalgonda", "Nalgonda District", AreaType.DISTRICT),
    Area("dist-yadadri", "Yadadri-Bhongir District", AreaType.DISTRICT),
    Area("dist-mahabubabad", "Mahabubabad District", AreaType.DISTRICT),
    Area("dist-khammam", "Khammam District", AreaType.DISTRICT),
    Area("dist-hanamkonda", "Hanamkonda (Warangal) District", AreaType.DISTRICT),
    Area("dist-bhadradri", "Bhadradri-Kothagudem District", AreaType.DISTRICT),
    Area("dist-mulugu", "Mulugu District", AreaType.DISTRICT),
    Area("nbhd-lb-nagar", "LB Nagar, Hyderabad", AreaType.NEIGHBOURHOOD),
    Area("nbhd-kapra", "Kapra, Hyderabad", AreaType.NEIGHBOURHOOD),
    Area("nbhd-uppal", "Uppal, Hyderabad", AreaType.NEIGHBOURHOOD),
    Area("nbhd-kukatpally", "Kukatpally, Hyderabad", AreaType.NEIGHBOURHOOD),
)


def get_area(area_id: str) -> Area:
    for area in PUBLIC_AREAS:
        if area.id == area_id:
            return area
    raise KeyError(area_id)
