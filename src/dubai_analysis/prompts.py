"""
Prompt builders for the analysis endpoints.

Each builder takes a validated request model and returns a `PromptSpec`;
the analysis service turns that into a `CompletionRequest`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .schemas import (
    AnalyzeRequest,
    CompetitorAnalysisRequest,
    DemographicAnalysisRequest,
    DeveloperInfoRequest,
    GenerateRequest,
    InvestmentAnalysisRequest,
    MarketTrendsRequest,
    NeighborhoodReportRequest,
    PropertyEstimationRequest,
    PropertyLookupRequest,
    PropertyValuationRequest,
    RentalAnalysisRequest,
)

MARKET_EXPERT = (
    "You are a Dubai real estate market expert assistant. "
    "Provide detailed, factual information about Dubai's real estate market."
)

DATA_SOURCES = (
    "Use data from reliable sources such as Dubai Land Department, Property Finder, "
    "Bayut, and other local real estate platforms."
)


@dataclass(frozen=True)
class PromptSpec:
    system: str
    prompt: str
    temperature: float | None = None
    max_tokens: int | None = None


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def _fmt_number(value: float | int | None) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _numbered(items: list[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def _sections(sections: list[tuple[str, list[str]]]) -> str:
    blocks = []
    for i, (title, bullets) in enumerate(sections, start=1):
        lines = [f"{i}. {title}"] + [f"   - {b}" for b in bullets]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def generate_prompt(req: GenerateRequest) -> PromptSpec:
    return PromptSpec(system=MARKET_EXPERT, prompt=req.prompt or "")


def rental_analysis_prompt(req: RentalAnalysisRequest) -> PromptSpec:
    subject = " ".join(
        p for p in (f"{req.bedrooms} bedroom" if req.bedrooms else "", req.property_type or "property") if p
    )
    prompt = (
        f"Please provide a detailed rental market analysis for {subject} in {req.location}, Dubai.\n\n"
        "Please include:\n"
        + _numbered(
            [
                "Current average rental prices for this property type in this area",
                "Rental price trends over the past 12 months",
                "Rental yield estimates",
                "Tenant demand analysis",
                "Seasonal rental fluctuations",
                "Market supply status (oversupplied, balanced, undersupplied)",
                "Future outlook for rental prices in this area",
                "Recommendations for landlords",
            ]
        )
        + "\n\nBase your analysis on current Dubai real estate market data, referencing the "
        "Dubai Land Department records and RERA index where possible."
    )
    return PromptSpec(
        system=(
            "You are a Dubai real estate market expert assistant specializing in rental market analysis. "
            "Provide detailed, factual information based on current market data."
        ),
        prompt=prompt,
    )


def market_trends_prompt(req: MarketTrendsRequest) -> PromptSpec:
    loc = req.location
    compare = ", ".join(req.compare_locations)
    params = [
        f"Primary Location: {loc}",
        f"Property Type: {req.property_type or 'All property types'}",
        f"Analysis Timeframe: Past {req.timeframe} months",
        f"Metrics of Focus: {', '.join(req.metric_focus)}",
        f"Comparison Locations: {compare or 'None requested'}",
        f"Include Developer Activity: {_yes_no(req.include_developer_activity)}",
        f"Include Regulatory Changes: {_yes_no(req.include_regulatory_changes)}",
        f"Include Infrastructure Projects: {_yes_no(req.include_infrastructure_projects)}",
        f"Forecast Period: Next {req.forecast_period} months",
        f"Segment Analysis (Luxury, Mid-market, Affordable): {_yes_no(req.segment_analysis)}",
    ]
    sections: list[tuple[str, list[str]]] = [
        (
            "Price Trend Analysis",
            [
                f"Historical price trends for {loc} over the past {req.timeframe} months",
                "Comparison to Dubai market average",
                "Price volatility assessment",
                "Price growth rate (annualized)",
            ],
        ),
        (
            "Transaction Volume Analysis",
            [
                "Transaction volume trends",
                "Percentage of off-plan vs. secondary market transactions",
                "Average time on market",
            ],
        ),
        (
            "Supply and Demand Analysis",
            ["Current supply levels", "Projected new supply entering the market", "Absorption rates"],
        ),
        ("Rental Market Analysis", ["Rental yield trends", "Rental price movement"]),
        (
            f"Forecast for Next {req.forecast_period} Months",
            ["Price projections", "Expected transaction volume", "Market risks and opportunities"],
        ),
    ]
    if req.include_developer_activity:
        sections.append(
            ("Developer Activity", [f"Major projects launched in {loc}", "Developer incentives and payment plans"])
        )
    if req.include_regulatory_changes:
        sections.append(
            ("Regulatory Environment", [f"Recent regulatory changes affecting {loc}", "RERA updates"])
        )
    if req.include_infrastructure_projects:
        sections.append(
            (
                "Infrastructure Development",
                [f"Major infrastructure projects affecting {loc}", "Expected impact on property values"],
            )
        )
    if req.segment_analysis:
        sections.append(
            (
                "Market Segment Analysis",
                ["Luxury segment performance", "Mid-market segment performance", "Affordable segment performance"],
            )
        )
    if req.compare_locations:
        sections.append(("Location Comparison", [f"Comparative performance metrics with {compare}"]))
    sections.append(("Investment Implications", [f"Best performing sub-areas within {loc}"]))

    prompt = (
        "As a Dubai real estate market analyst with access to the latest market data, provide a "
        "comprehensive market trend analysis for the following criteria:\n\n"
        "Analysis Parameters:\n"
        + "\n".join(f"- {p}" for p in params)
        + "\n\nPlease provide a comprehensive market trend analysis including:\n\n"
        + _sections(sections)
    )
    return PromptSpec(
        system=(
            "You are a Dubai real estate market analyst. Provide data-driven trend analysis "
            "with numerical estimates where possible."
        ),
        prompt=prompt,
    )


def investment_analysis_prompt(req: InvestmentAnalysisRequest) -> PromptSpec:
    if req.down_payment and req.purchase_price:
        down = f"{_fmt_number(req.down_payment)} AED ({req.down_payment / req.purchase_price * 100:.2f}% of purchase price)"
    else:
        down = "Not specified"
    details = [
        f"Location: {req.location}",
        f"Property Type: {req.property_type}",
        f"Purchase Price: {_fmt_number(req.purchase_price)} AED",
        f"Expected Monthly Rent: {_fmt_number(req.expected_rent)} AED",
        f"Area: {_fmt_number(req.area)} square feet",
        f"Down Payment: {down}",
        f"Loan Term: {req.loan_term} years",
        f"Interest Rate: {_fmt_number(req.interest_rate)}%",
        f"Annual Maintenance Costs: {_fmt_number(req.maintenance_costs)}% of property value",
        f"Service Charges: {_fmt_number(req.service_charges)} AED per square foot annually",
        f"Expected Occupancy Rate: {_fmt_number(req.occupancy_rate)}%",
        f"Investment Period: {req.investment_period} years",
        f"Expected Annual Property Appreciation: {_fmt_number(req.property_appreciation_rate)}%",
    ]
    asks = [
        "Return on Investment (ROI) calculation",
        "Cash on Cash Return",
        "Cap Rate",
        "Gross Rental Yield",
        "Net Rental Yield",
        "Monthly cash flow analysis",
        "Break-even analysis",
        "Investment payback period",
        f"Projected property value after {req.investment_period} years",
        "Internal Rate of Return (IRR)",
        f"Comparison with market averages for similar properties in {req.location}",
        "Risk assessment (low, medium, high) with detailed explanation",
        "Sensitivity analysis showing how changes in key variables affect returns",
        "Investment recommendations and alternative strategies",
    ]
    prompt = (
        "As a Dubai real estate investment analyst, please provide a comprehensive investment "
        "analysis for the following property:\n\nInvestment Property Details:\n"
        + "\n".join(f"- {d}" for d in details)
        + "\n\nPlease provide a comprehensive investment analysis including:\n"
        + _numbered(asks)
        + "\n\nInclude all fees and taxes relevant to Dubai real estate investments, including "
        "rental income registration fees."
    )
    return PromptSpec(
        system=(
            "You are a Dubai real estate investment analyst specializing in property ROI analysis. "
            "Provide detailed, data-driven investment analyses that help investors make informed decisions."
        ),
        prompt=prompt,
    )


def property_valuation_prompt(req: PropertyValuationRequest) -> PromptSpec:
    details = [
        f"Location/Community: {req.location}",
        f"Property Type: {req.property_type}",
        f"Bedrooms: {_fmt_number(req.bedrooms)}",
        f"Bathrooms: {_fmt_number(req.bathrooms)}",
        f"Area (sq ft): {_fmt_number(req.area)}",
        f"Age (years): {_fmt_number(req.age)}",
        f"Floor: {_fmt_number(req.floor)}",
        f"View: {req.view or 'Standard'}",
        f"Amenities: {', '.join(req.amenities) if req.amenities else 'Standard community amenities'}",
        f"Finish Quality: {req.finish_quality}",
        f"Furnishing Status: {req.furnishing_status}",
    ]
    sections: list[tuple[str, list[str]]] = [
        (
            "Estimated Market Value",
            [
                "Price range (minimum and maximum estimated value)",
                "Price per square foot",
                "Confidence level of the estimate (high, medium, low)",
            ],
        ),
        (
            "Valuation Methodology",
            ["How the valuation was determined", "Comparable recent transactions in the same community"],
        ),
    ]
    if req.include_rental_estimate:
        sections.append(
            ("Rental Income Potential", ["Estimated annual rental income", "Monthly rental estimate"])
        )
    if req.include_market_comparison:
        sections.append(
            (
                "Market Comparison",
                ["How the property compares to similar properties", "Price trends over the past 2 years"],
            )
        )
    if req.include_investment_metrics:
        sections.append(
            (
                "Investment Analysis",
                [
                    "Estimated gross rental yield",
                    "Net yield after expenses",
                    "Projected 3-year capital appreciation potential",
                ],
            )
        )
    sections.append(("Value Enhancement Opportunities", ["Recommended improvements to increase property value"]))
    sections.append(("Market Risks and Considerations", ["Market-specific risks for this location"]))

    prompt = (
        "As a Dubai real estate valuation expert, provide a comprehensive property valuation "
        "analysis for the following property:\n\nProperty Details:\n"
        + "\n".join(f"- {d}" for d in details)
        + "\n\nPlease provide a detailed property valuation with the following sections:\n\n"
        + _sections(sections)
        + "\n\nPlease provide numerical data where possible and explain your reasoning throughout."
    )
    return PromptSpec(
        system=(
            "You are a Dubai real estate valuation expert with extensive knowledge of property prices, "
            "market trends, and valuation methodologies."
        ),
        prompt=prompt,
    )


def property_estimation_prompt(req: PropertyEstimationRequest) -> PromptSpec:
    unspecified = "Not specified"
    details = [
        f"Location: {req.location}",
        f"Property Type: {req.property_type}",
        f"Bedrooms: {req.bedrooms or unspecified}",
        f"Bathrooms: {_fmt_number(req.bathrooms) if req.bathrooms else unspecified}",
        f"Area: {_fmt_number(req.area)} square feet/meters",
        f"Property Age: {req.age or unspecified} years",
        f"Amenities: {', '.join(req.amenities) if req.amenities else unspecified}",
        f"View Type: {req.view_type or unspecified}",
        f"Furnishing Status: {req.furnishing_status or unspecified}",
    ]
    prompt = (
        "As a Dubai real estate valuation expert, please provide a detailed property price "
        "estimation for the following property:\n\nProperty Details:\n"
        + "\n".join(f"- {d}" for d in details)
        + "\n\nPlease provide:\n"
        + _numbered(
            [
                "Estimated market value range (in AED)",
                "Estimated rental income (monthly in AED)",
                "Price per square foot/meter comparison with similar properties",
                "Key factors influencing this valuation",
                "Confidence level of the estimation (high, medium, low) with explanation",
                "Market trend for this type of property in the specified location",
                "Recommendations for value enhancement",
                "Comparable recent transactions in the area",
            ]
        )
        + "\n\n"
        + DATA_SOURCES
    )
    return PromptSpec(
        system=(
            "You are a Dubai real estate valuation expert specializing in property price estimation. "
            "Provide accurate, data-driven valuations based on current market conditions."
        ),
        prompt=prompt,
    )


_NEIGHBORHOOD_SECTIONS = (
    ("include_lifestyle_amenities", "Lifestyle and Amenities", ["Parks and green spaces", "Community facilities"]),
    ("include_transportation", "Transportation and Accessibility", ["Metro stations and proximity", "Average commute times"]),
    ("include_schools", "Education Options", ["Nurseries and schools (rating, curriculum, fee range)"]),
    ("include_healthcare", "Healthcare Facilities", ["Hospitals and clinics within or near the neighborhood"]),
    ("include_retail", "Shopping and Retail", ["Major malls", "Supermarkets and grocery stores"]),
    ("include_dining", "Dining and Entertainment", ["Restaurant variety", "Family entertainment venues"]),
    ("include_property_types", "Property Types and Housing", ["Common property types", "Average property sizes"]),
    (
        "include_investment_potential",
        "Real Estate Investment Potential",
        ["Current price ranges per sq ft", "Rental yield estimates", "Capital appreciation history"],
    ),
    ("include_expats_guide", "Expat Living Guide", ["Expat community presence", "Cost of living"]),
    ("include_future_projects", "Future Development", ["Planned projects and their expected impact"]),
)


def neighborhood_report_prompt(req: NeighborhoodReportRequest) -> PromptSpec:
    name = req.neighborhood
    sections: list[tuple[str, list[str]]] = [
        (
            "Overview and History",
            [f"Brief history of {name}", "Location within Dubai", "Demographic profile"],
        )
    ]
    for flag, title, bullets in _NEIGHBORHOOD_SECTIONS:
        if getattr(req, flag):
            sections.append((title, bullets))
    prompt = (
        f"As a Dubai neighborhood specialist, provide a comprehensive neighborhood report for {name} "
        "with the following sections:\n\n" + _sections(sections)
    )
    return PromptSpec(
        system=(
            "You are a Dubai neighborhood specialist with expertise in area demographics, "
            "amenities and property trends."
        ),
        prompt=prompt,
    )


def competitor_analysis_prompt(req: CompetitorAnalysisRequest) -> PromptSpec:
    parts = [
        f"{req.bedrooms} bedroom" if req.bedrooms else "",
        f"{_fmt_number(req.bathrooms)} bathroom" if req.bathrooms else "",
        req.property_type or "",
    ]
    extras = [
        f"approximately {_fmt_number(req.area)} sq ft" if req.area else "",
        f"with amenities including {', '.join(req.amenities)}" if req.amenities else "",
        f"in the price range of {req.price_range[0]} to {req.price_range[1]} AED"
        if req.price_range and len(req.price_range) >= 2
        else "",
    ]
    subject = " ".join(p for p in parts if p)
    extra = " ".join(e for e in extras if e)
    prompt = (
        f'Please provide a detailed competitor analysis for a {subject} property located at '
        f'"{req.property_address}"' + (f" {extra}" if extra else "") + ".\n\n"
        f"The analysis should focus on properties within a {_fmt_number(req.radius)}km radius and should include:\n"
        + _numbered(
            [
                "Overview of similar properties currently listed for sale/rent",
                "Price comparison (average, median, high, and low prices)",
                "Average days on market for similar properties",
                "Key differentiating factors between the subject property and competitors",
                "Assessment of competitive advantage/disadvantage",
                "Recommendations for pricing strategy",
                "Recommendations for marketing strategy",
                "Identification of any market gaps or opportunities",
            ]
        )
        + "\n\n"
        + DATA_SOURCES
    )
    return PromptSpec(
        system=(
            "You are a Dubai real estate competitor analysis expert. Provide detailed, data-driven "
            "analysis of similar properties in the requested area."
        ),
        prompt=prompt,
    )


def developer_info_prompt(req: DeveloperInfoRequest) -> PromptSpec:
    prompt = (
        f'Please provide detailed information about the developer "{req.developer_name}" in '
        "Dubai's real estate market.\n\nPlease include:\n"
        + _numbered(
            [
                "Company profile and history in Dubai",
                "Major projects and developments (completed, ongoing, and planned)",
                "Market reputation and reliability assessment",
                "Quality standards and typical property features",
                "Price range of their properties",
                "Investment performance of their previous projects",
                "Any relevant news or updates about this developer",
            ]
        )
        + "\n\nBase your analysis on current Dubai real estate market data, referencing the "
        "Dubai Land Department records where possible."
    )
    return PromptSpec(
        system=MARKET_EXPERT.replace("real estate market.", "real estate market and developers."),
        prompt=prompt,
    )


def demographic_analysis_prompt(req: DemographicAnalysisRequest) -> PromptSpec:
    area = req.location
    focus = f" with a focus on {req.property_type} demand" if req.property_type else ""
    sections: list[tuple[str, list[str]]] = [
        (
            "Population Statistics",
            [
                "Total population and density (persons per sq km)",
                "Annualized population growth over the past 3-5 years",
                "Distribution by age group (0-17, 18-35, 36-55, 55+) in percent",
                "Top 3-5 nationalities with approximate percentages",
            ],
        ),
        (
            "Socioeconomic Profile",
            [
                "Average household income range in AED per year",
                "Dominant employment sectors",
                "Share of property owners versus renters",
            ],
        ),
        (
            "Infrastructure Analysis",
            [
                "Metro, tram, bus and road connectivity with typical commute times",
                "Schools, universities and healthcare facilities serving the area",
                "Malls, parks and recreational facilities",
            ],
        ),
        (
            "Lifestyle and Community",
            ["Typical resident profile", "Community atmosphere", "Safety perception"],
        ),
        (
            "Real Estate Impact",
            [
                f"How current demographics shape property types and values in {area}",
                "Characteristics of rental demand",
            ],
        ),
        (
            "Future Outlook (Next 3-5 Years)",
            [
                f"Projected population shifts in {area}",
                "Planned infrastructure or commercial developments affecting the area",
            ],
        ),
    ]
    prompt = (
        f"Provide a comprehensive demographic and infrastructure analysis for {area}, Dubai{focus}.\n\n"
        + _sections(sections)
        + "\n\nGive specific figures wherever possible and mark estimates as such. "
        "Do not use markdown formatting."
    )
    return PromptSpec(
        system=(
            "You are a Dubai demographics and infrastructure analyst. Provide data-driven insights "
            "with population statistics and infrastructure details for specific areas."
        ),
        prompt=prompt,
    )


def property_lookup_prompt(req: PropertyLookupRequest) -> PromptSpec:
    name = req.search_term or "Property"
    area = req.location or "Dubai Marina"
    filters = [
        f"Property type: {req.property_type}" if req.property_type else "",
        f"Bedrooms: {req.bedrooms}" if req.bedrooms else "",
        f"Price range: {req.price_range}" if req.price_range else "",
        f"Amenities: {', '.join(req.amenities)}" if req.amenities else "",
    ]
    prompt = (
        f'Look up the property "{name}" in {area}, Dubai.\n'
        + "".join(f"- {f}\n" for f in filters if f)
        + "\nRespond with a single JSON object with the keys: metadata (id, name, beds, baths, sqft, "
        "developer, purchaseYear, location, status, coordinates), priceHistory (list of {year, price}), "
        "nearby, ongoingProjects, developer (id, name, headquarters, totalProjects, averageROI, "
        "revenueByYear), marketAnalysis (currentValue, averagePrice, priceChange, marketActivity, roi, "
        "appreciation, confidence), transactions and dldData. Prices are AED per square foot. "
        "Do not wrap the JSON in markdown."
    )
    return PromptSpec(
        system=(
            "You are a Dubai property records assistant. Answer only with JSON built from "
            "Dubai Land Department style records."
        ),
        prompt=prompt,
        temperature=0.2,
    )


def analyze_prompt(req: AnalyzeRequest, context: list[str]) -> PromptSpec:
    prompt = (
        "Here is the context to help with your analysis:\n\n"
        + "\n\n".join(context)
        + f"\n\nQuestion: {req.query}\n\n"
        "When tabular output, a chart or a price forecast would help, call the matching function."
    )
    return PromptSpec(
        system=(
            "You are a Dubai real-estate analyst. Use the supplied market data to answer the question "
            "and summarize price trends."
        ),
        prompt=prompt,
        temperature=0.5,
    )


def market_context(location: str | None, property_type: str | None) -> list[str]:
    """Static market snippets passed to the analyze prompt as retrieval context."""
    loc = location or "Dubai"
    kind = property_type or "properties"
    return [
        f"Dubai property market update: Average price for {kind} in {loc} is AED 1,350 per sqft, "
        "showing 8.2% increase YoY. Transaction volume increased by 34% compared to the same period last year.",
        f"Recent sales data: {loc} saw 128 transactions for {kind} with an average price of AED "
        f"{'1,850' if loc == 'Downtown Dubai' else '1,400'} per sqft.",
        f"Rental yield analysis: {kind} in {loc} currently generate 6.8% annual rental yield on average.",
        f"Market forecast: Experts predict continued price growth of 5-7% for {kind} in {loc} through year end.",
    ]


def translation_prompt(text: str, source: str, target: str) -> PromptSpec:
    return PromptSpec(
        system=f"You are a professional translator specializing in real estate content from {source} to {target}.",
        prompt=f"Translate the following {source} text to {target}. Reply with the translation only.\n\n{text}",
        temperature=0.1,
    )


ANALYZE_FUNCTIONS: tuple[dict[str, Any], ...] = (
    {
        "name": "generate_chart",
        "description": "Generates a chart based on price or trend data",
        "parameters": {
            "type": "object",
            "properties": {
                "data": {
                    "type": "array",
                    "description": "Array of data points for the chart",
                    "items": {
                        "type": "object",
                        "properties": {"x": {"type": "string"}, "y": {"type": "number"}},
                        "required": ["x", "y"],
                    },
                },
                "chart_type": {"type": "string", "enum": ["line", "bar", "scatter", "area"]},
                "title": {"type": "string"},
            },
            "required": ["data", "chart_type"],
        },
    },
    {
        "name": "forecast_time_series",
        "description": "Forecasts future values based on historical price data",
        "parameters": {
            "type": "object",
            "properties": {
                "prices": {"type": "array", "items": {"type": "number"}},
                "dates": {"type": "array", "items": {"type": "string", "description": "YYYY-MM-DD"}},
                "periods": {"type": "number", "description": "Number of periods to forecast"},
                "interval": {"type": "string", "enum": ["day", "week", "month", "quarter", "year"]},
                "confidence_level": {"type": "number", "default": 0.95},
            },
            "required": ["prices", "dates", "periods", "interval"],
        },
    },
    {
        "name": "format_table",
        "description": "Formats data into a markdown table",
        "parameters": {
            "type": "object",
            "properties": {
                "data": {"type": "array", "items": {"type": "object"}},
                "headers": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["data"],
        },
    },
)
