"""Tag and county vocabularies used for categorization."""

from typing import Dict, FrozenSet, List

OTHER_COUNTY = "Other"

TAG_CATEGORIES: Dict[str, str] = {
    "single-family": "Single-family homes, detached houses, residential properties",
    "multi-family": "Multi-family residential properties (3+ unit apartments, condos, larger buildings) "
                    "for investment or development but NOT about individual family purchases/homes",
    "economy": "Economic conditions, market trends, financial indicators",
    "commercial": "Commercial real estate (office, retail, industrial)",
    "development": "New construction, development projects, zoning",
    "investment": "Investment activity, acquisitions, sales, financing",
    "policy": "Government policy, regulations, legislation affecting real estate",
    "regulation": "Government regulations, rules, compliance requirements about real estate "
                  "specifically, not general regulation",
    "sustainability": "Green building, sustainability, environmental initiatives",
    "infrastructure": "Transportation, utilities, public infrastructure",
    "demographics": "Population trends, migration, demographic shifts",
    "financing": "Mortgage rates, lending, capital markets",
    "retail": "Retail real estate, shopping centers, store closures/openings",
    "office": "Office real estate, workplace trends, remote work impact",
    "industrial": "Industrial real estate, warehouses, logistics",
    "hospitality": "Hotels, hospitality, tourism-related real estate",
    "residential": "Single-family homes, residential market trends",
    "bay-area": "Specific to San Francisco Bay Area region",
    "california": "California state-wide real estate issues",
    "national": "National-level real estate trends and policies that apply broadly across the entire "
                "United States. Do NOT use for articles about specific cities, counties, or regions",
    "local": "Local-level real estate trends and policies that apply to a specific city, county, or region",
}

# Tags that qualify an article from a national source for the National section
NATIONAL_TAGS: FrozenSet[str] = frozenset({"national", "economy"})

COUNTY_NAMES: List[str] = [
    "Adams", "Alameda", "Alexandria", "Allegan", "Allegheny", "Amelia",
    "Anne Arundel", "Anoka", "Arapahoe", "Arlington", "Armstrong", "Baker",
    "Baltimore", "Baltimore City", "Barry", "Bastrop", "Beaver", "Bexar",
    "Blount", "Bond", "Boone", "Brazoria", "Brevard", "Bronx", "Broomfield",
    "Broward", "Brown", "Bucks", "Bullitt", "Burlington", "Butler", "Cabarrus",
    "Caldwell", "Calhoun", "Camden", "Campbell", "Canadian", "Cannon",
    "Carroll", "Carver", "Cass", "Charles", "Charles City", "Chatham",
    "Cheatham", "Cherokee", "Chesapeake", "Chester", "Chesterfield", "Chilton",
    "Chisago", "Clackamas", "Clark", "Clay", "Clayton", "Clermont",
    "Cleveland", "Clinton", "Cobb", "Collin", "Columbia", "Comal",
    "Contra Costa", "Cook", "Crittenden", "Cumberland", "Currituck",
    "Cuyahoga", "Dakota", "Dallas", "Davidson", "Davis", "DeKalb", "DeSoto",
    "Dearborn", "Delaware", "Denton", "Denver", "Dickson",
    "District of Columbia", "Dodge", "Douglas", "DuPage", "Durham", "Duval",
    "El Dorado", "Ellis", "Erie", "Essex", "Fairfax", "Fairfield",
    "Falls Church", "Fayette", "Floyd", "Forsyth", "Fort Bend", "Franklin",
    "Frederick", "Fulton", "Galveston", "Gaston", "Gates", "Geauga", "Genesee",
    "Gloucester", "Goochland", "Granville", "Guadalupe", "Gwinnett",
    "Hamilton", "Hampton", "Hancock", "Hanover", "Harford", "Harris",
    "Harrison", "Hartford", "Hays", "Hendricks", "Hennepin", "Henrico",
    "Henry", "Hernando", "Hillsborough", "Howard", "Ionia", "Iredell",
    "Isanti", "Isle of Wight", "Jackson", "Jefferson", "Jersey", "Johnson",
    "Johnston", "Kane", "Kaufman", "Kent", "Kenton", "King", "Kings",
    "Lafayette", "Lake", "Lancaster", "Lapeer", "Leavenworth", "Liberty",
    "Licking", "Lincoln", "Livingston", "Logan", "Lorain", "Los Angeles",
    "Loudoun", "Macomb", "Macon", "Macoupin", "Madison", "Manassas",
    "Manassas Park", "Maricopa", "Marin", "Marion", "Marshall", "McClain",
    "McHenry", "Mecklenburg", "Medina", "Miami", "Miami-Dade", "Middlesex",
    "Milwaukee", "Monroe", "Montcalm", "Montgomery", "Morgan", "Multnomah",
    "Napa", "Nassau", "Nelson", "New Kent", "New York", "Newport News",
    "Niagara", "Norfolk", "Nye", "Oakland", "Oklahoma", "Oldham", "Orange",
    "Orleans", "Osceola", "Ottawa", "Ozaukee", "Palm Beach", "Parker", "Pasco",
    "Philadelphia", "Pickaway", "Pierce", "Pinal", "Pinellas", "Placer",
    "Plaquemines", "Platte", "Plymouth", "Polk", "Portsmouth", "Pottawatomie",
    "Powhatan", "Prince George's", "Prince William", "Queen Anne's", "Queens",
    "Racine", "Ramsey", "Ray", "Richmond", "Riverside", "Robertson",
    "Rockland", "Rockwall", "Rowan", "Rutherford", "Sacramento", "Salt Lake",
    "San Bernardino", "San Diego", "San Francisco", "San Mateo", "Santa Clara",
    "Scott", "Seminole", "Shelby", "Sherburne", "Skamania", "Smith",
    "Snohomish", "Solano", "Sonoma", "Southampton", "Spencer", "St. Bernard",
    "St. Charles", "St. Clair", "St. Croix", "St. John the Baptist",
    "St. Johns", "St. Louis", "St. Louis City", "St. Tammany", "Stafford",
    "Stanly", "Suffolk", "Summit", "Sumner", "Sutter", "Tarrant", "Tate",
    "Tipton", "Tolland", "Tooele", "Travis", "Trimble", "Trousdale", "Tunica",
    "Union", "Vance", "Ventura", "Virginia Beach", "Volusia", "Wake", "Walker",
    "Waller", "Walworth", "Warren", "Washington", "Waukesha", "Wayne", "Weber",
    "Westchester", "Westmoreland", "Will", "Williamson", "Wilson", "Wise",
    "Wright", "Wyandotte", "Wyoming", "Yamhill", "Yolo", "York", "Yuba",
    "Other",
]

VALID_COUNTIES: FrozenSet[str] = frozenset(COUNTY_NAMES)


def selectable_counties() -> List[str]:
    """Counties a subscriber can pick, without the catch-all."""
    return [c for c in COUNTY_NAMES if c != OTHER_COUNTY]
