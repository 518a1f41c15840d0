from __future__ import annotations

from app.schemas.research import ModuleId, ResearchInput


MODULE_TITLES: dict[ModuleId, str] = {
    ModuleId.COMPANY_OVERVIEW: "Company Overview",
    ModuleId.TOP_MARKETS: "Top Markets Analysis",
    ModuleId.LOCAL_ENTITY: "Local Entity & Cross-Border Analysis",
    ModuleId.PAYMENT_METHODS: "Checkout & Payment Methods",
    ModuleId.PSP_DETECTION: "PSP / Payment Provider Detection",
    ModuleId.COMPLAINTS: "Customer Complaints & Payment Issues",
    ModuleId.EXPANSION: "Expansion Plans",
    ModuleId.NEWS: "Latest Payment & Financial News",
}

MODULE_ORDER: list[ModuleId] = [
    ModuleId.COMPANY_OVERVIEW,
    ModuleId.TOP_MARKETS,
    ModuleId.LOCAL_ENTITY,
    ModuleId.PAYMENT_METHODS,
    ModuleId.PSP_DETECTION,
    ModuleId.COMPLAINTS,
    ModuleId.EXPANSION,
    ModuleId.NEWS,
]

SELLER_CONTEXT = (
    "You are a research analyst for a payment orchestration company. The platform connects businesses "
    "to multiple PSPs (Payment Service Providers), APMs (Alternative Payment Methods), and fraud tools "
    "through a single integration.\n\n"
    "Key value propositions:\n"
    "- Single API integration to access 100+ payment providers globally\n"
    "- Smart routing between PSPs for higher approval rates and lower costs\n"
    "- Instant failover if one PSP goes down (no single point of failure)\n"
    "- Local payment methods (APMs) in every market through one integration\n"
    "- Reduce cross-border fees by enabling local acquiring in new markets\n"
    "- Unified analytics and reporting across all payment providers\n\n"
    "The goal of this research is to identify pain points and opportunities to help this prospect."
)

CRITICAL_APMS: dict[str, list[str]] = {
    "Brazil": ["Pix", "Boleto"],
    "Colombia": ["PSE", "Nequi"],
    "Mexico": ["OXXO", "SPEI"],
    "India": ["UPI", "Paytm"],
    "Argentina": ["Mercado Pago", "Rapipago"],
    "Chile": ["Webpay", "Khipu"],
    "Peru": ["PagoEfectivo"],
    "Indonesia": ["GoPay", "OVO", "Dana"],
    "US": ["Apple Pay", "Google Pay", "Afterpay/BNPL"],
    "Europe": ["iDEAL (NL)", "Bancontact (BE)", "MB Way (PT)", "Bizum (ES)", "Klarna"],
}

KNOWN_PSPS = [
    "Stripe",
    "Adyen",
    "dLocal",
    "Checkout.com",
    "PayU",
    "Braintree",
    "Worldpay",
    "Fiserv",
    "Nuvei",
    "Rapyd",
]


def output_instructions(markers: tuple[str, str] | None = None) -> str:
    if markers:
        start, end = markers
        return (
            "IMPORTANT: Respond with a single valid JSON object. Put the line "
            f"{start} immediately before the JSON and the line {end} immediately after it. "
            "Do not use markdown fences. The JSON must parse correctly."
        )
    return (
        "IMPORTANT: Always respond with ONLY a valid JSON object. No markdown, no explanation "
        "outside the JSON. The JSON must parse correctly."
    )


def _domains_note(input: ResearchInput) -> str:
    domains = input.all_domains()
    if len(domains) > 1:
        return (
            f"The company operates across multiple domains: {', '.join(domains)}. "
            "When searching, use all of these domains to find market-specific information."
        )
    return f"Website: {input.domain}"


def _module_body(module_id: ModuleId, input: ResearchInput) -> str:
    name = input.company_name
    note = _domains_note(input)
    industry = input.industry.value
    region = input.region.value

    if module_id == ModuleId.COMPANY_OVERVIEW:
        return (
            f'Research the company "{name}" ({note}) in the {industry} industry.\n\n'
            "Use current, accurate information about this company and return a JSON object with this exact structure:\n"
            "{\n"
            '  "what_they_do": "1-2 sentence description of the company\'s core business",\n'
            '  "hq_location": "City, Country",\n'
            '  "company_size": "Approximate employee count or range",\n'
            '  "founded_year": "Year founded or null",\n'
            '  "business_model": "B2C / B2B / Marketplace / etc.",\n'
            '  "key_products": ["product1", "product2"],\n'
            '  "funding": {\n'
            '    "status": "Private / Public / Bootstrapped",\n'
            '    "latest_round": "Series X - $XXM - MonthYear or null",\n'
            '    "total_raised": "$XXM or null",\n'
            '    "investors": ["investor1", "investor2"]\n'
            "  },\n"
            '  "recent_highlights": ["Recent growth announcement or financial result", "Recent announcement"]\n'
            "}"
        )

    if module_id == ModuleId.TOP_MARKETS:
        return (
            f'Research the top markets for "{name}" ({note}), especially in the {region} region.\n\n'
            "Look for web traffic data, revenue distribution, job postings by country, and market expansion news. "
            "Return a JSON object:\n"
            "{\n"
            '  "global_top_markets": [\n'
            '    {"country": "Country name", "relevance": "High/Medium/Low", "evidence": "Why this market matters"}\n'
            "  ],\n"
            '  "target_region_markets": [\n'
            '    {"country": "Country name", "relevance": "High/Medium/Low", "evidence": "Why this market matters"}\n'
            "  ],\n"
            '  "expanding_to": ["Country or region they seem to be entering"],\n'
            '  "market_notes": "Any additional context about their market strategy"\n'
            "}\n\n"
            f"List at least 5 global markets and focus especially on {region} markets."
        )

    if module_id == ModuleId.LOCAL_ENTITY:
        return (
            f'For "{name}" ({note}), research whether they have legal entities or subsidiaries in each of their key markets.\n\n'
            "A local entity means they likely use local acquiring (lower fees, higher approval rates). "
            "No local entity means likely cross-border processing (higher fees, lower approval rates), "
            "which is a key selling point.\n\n"
            "Return JSON:\n"
            "{\n"
            '  "entities": [\n'
            "    {\n"
            '      "country": "Country name",\n'
            '      "has_local_entity": true,\n'
            '      "entity_name": "Legal entity name if found, null otherwise",\n'
            '      "processing_type": "Local acquiring" or "Cross-border (opportunity)",\n'
            '      "fee_impact": "Likely paying higher cross-border fees" or "Already processing locally",\n'
            '      "evidence": "How you determined this"\n'
            "    }\n"
            "  ],\n"
            '  "cross_border_opportunity": "Summary of how many markets they are likely overpaying in",\n'
            '  "key_insight": "The single most important finding about their entity structure"\n'
            "}"
        )

    if module_id == ModuleId.PAYMENT_METHODS:
        apms = "\n".join(f"- {market}: {', '.join(methods)}" for market, methods in CRITICAL_APMS.items())
        return (
            f'Research the payment methods available at "{name}" ({note}) checkout for each of their key markets, '
            "using their help center or FAQ pages where available.\n\n"
            f"Critical APMs by market that they should have:\n{apms}\n\n"
            "Return JSON:\n"
            "{\n"
            '  "markets": [\n'
            "    {\n"
            '      "country": "Country",\n'
            '      "available_methods": ["Visa", "Mastercard", "Pix"],\n'
            '      "missing_critical_apm": ["APM they are missing"],\n'
            '      "opportunity_level": "High/Medium/Low",\n'
            '      "notes": "Any context"\n'
            "    }\n"
            "  ],\n"
            '  "biggest_gap": "The single most impactful missing payment method and market",\n'
            '  "total_missing_apms": 0,\n'
            '  "key_insight": "Summary of payment method coverage gaps"\n'
            "}"
        )

    if module_id == ModuleId.PSP_DETECTION:
        return (
            f'Research what PSP(s) and payment providers "{name}" ({note}) currently uses. '
            f"Check for {', '.join(KNOWN_PSPS)}, payment orchestrators, case studies, press releases, "
            "and job postings mentioning their payment tech stack.\n\n"
            "Return JSON:\n"
            "{\n"
            '  "detected_psps": [\n'
            '    {"name": "PSP name", "confidence": "High/Medium/Low", "evidence": "Where you found this"}\n'
            "  ],\n"
            '  "psp_count": 0,\n'
            '  "has_orchestrator": false,\n'
            '  "orchestrator_name": "Name if they have one, null otherwise",\n'
            '  "redundancy_risk": "High (single PSP) / Medium / Low",\n'
            '  "processing_scope": "Global / Regional / Local",\n'
            '  "key_insight": "The most important finding about their payment stack",\n'
            '  "outreach_angle": "How orchestration can specifically help based on their current setup"\n'
            "}"
        )

    if module_id == ModuleId.COMPLAINTS:
        return (
            f'Find customer complaints about payment issues at "{name}" ({note}): card declines, '
            "checkout problems, failed payments, fraud, and social media mentions of payment issues.\n\n"
            "Return JSON:\n"
            "{\n"
            '  "complaints_found": true,\n'
            '  "severity": "High/Medium/Low/None",\n'
            '  "complaint_themes": [\n'
            '    {"theme": "Theme name (e.g. Card declines)", "frequency": "Common/Occasional/Rare", "example": "Example complaint"}\n'
            "  ],\n"
            '  "affected_markets": ["Countries where complaints are most common"],\n'
            '  "fraud_mentions": false,\n'
            '  "checkout_ux_issues": false,\n'
            '  "key_insight": "Summary of payment pain points",\n'
            '  "outreach_angle": "Specific complaint detail that can be used in outreach"\n'
            "}"
        )

    if module_id == ModuleId.EXPANSION:
        return (
            f'Research "{name}" ({note}) expansion plans and new market entries: press releases about new '
            "countries, job postings in new countries (especially payment roles), product launches that need "
            "payment infrastructure, and M&A or partnerships suggesting geographic expansion.\n\n"
            "Return JSON:\n"
            "{\n"
            '  "expanding_to": [\n'
            '    {"market": "Country or region", "evidence": "Job posting / press release / announcement", "timeline": "Announced timeline or Unknown"}\n'
            "  ],\n"
            '  "payment_hires": [\n'
            '    {"role": "Job title", "location": "Country", "signals": "What this role signals"}\n'
            "  ],\n"
            '  "recent_launches": ["New product or market launched recently"],\n'
            '  "ma_activity": "Any M&A or partnerships with payment implications",\n'
            '  "expansion_urgency": "High/Medium/Low",\n'
            '  "key_insight": "How their expansion creates payment infrastructure needs"\n'
            "}"
        )

    return (
        f'Find the most recent and relevant news about "{name}" ({note}) related to payments, finance, '
        "and growth: funding rounds or IPO news, payment provider changes, outages, growth announcements, "
        "partnerships with payment companies, and earnings mentioning payment costs.\n\n"
        "Return JSON:\n"
        "{\n"
        '  "news_items": [\n'
        "    {\n"
        '      "headline": "News headline",\n'
        '      "date": "Month Year",\n'
        '      "category": "Funding / Payment Integration / Outage / Growth / Partnership / Earnings",\n'
        '      "summary": "1-2 sentence summary",\n'
        '      "relevance": "Why this matters for an outreach conversation"\n'
        "    }\n"
        "  ],\n"
        '  "financial_health": "Strong / Stable / Uncertain",\n'
        '  "recent_payment_events": "Summary of any payment-specific news",\n'
        '  "trigger_events": ["Specific event that makes now a good time to reach out"],\n'
        '  "key_insight": "The most compelling recent development for outreach"\n'
        "}"
    )


def get_module_prompt(
    module_id: ModuleId,
    input: ResearchInput,
    markers: tuple[str, str] | None = None,
) -> str:
    return f"{SELLER_CONTEXT}\n\n{output_instructions(markers)}\n\n{_module_body(module_id, input)}"


def get_search_queries(module_id: ModuleId, input: ResearchInput, limit: int = 3) -> list[str]:
    name = input.company_name.strip()
    domain = input.domain.strip()
    region = input.region.value

    if module_id == ModuleId.COMPANY_OVERVIEW:
        queries = [f"{name} company overview", f"{name} funding round investors", f"{name} {domain} about"]
    elif module_id == ModuleId.TOP_MARKETS:
        queries = [f"{name} top countries traffic", f"{name} {region} market", f"{name} careers locations"]
    elif module_id == ModuleId.LOCAL_ENTITY:
        queries = [f"{name} subsidiary", f"{name} legal entity {region}", f"{name} office {region}"]
    elif module_id == ModuleId.PAYMENT_METHODS:
        queries = [f"{name} payment methods", f"{name} how to pay", f"{name} checkout"]
    elif module_id == ModuleId.PSP_DETECTION:
        psps = " OR ".join(f'"{p}"' for p in KNOWN_PSPS[:5])
        queries = [f"{name} payment provider", f"{name} ({psps})", f"{name} payment orchestration"]
    elif module_id == ModuleId.COMPLAINTS:
        queries = [
            f"{name} payment not working site:reddit.com",
            f"{name} card declined",
            f"{name} payment failed",
        ]
    elif module_id == ModuleId.EXPANSION:
        queries = [f"{name} expansion new markets", f"{name} launches in", f"{name} payments job"]
    else:
        queries = [f"{name} news payments", f"{name} funding", f"{name} partnership payments"]

    return queries[: max(0, int(limit or 0))]


def get_synthesis_prompt(
    input: ResearchInput,
    modules_json: str,
    markers: tuple[str, str] | None = None,
) -> str:
    return (
        f"{SELLER_CONTEXT}\n\n{output_instructions(markers)}\n\n"
        f'Based on the following research findings about "{input.company_name}" ({input.domain}), '
        "provide a synthesis and opportunity assessment.\n\n"
        f"RESEARCH FINDINGS:\n{modules_json}\n\n"
        "Return a JSON object with this exact structure:\n"
        "{\n"
        '  "opportunity_score": 7,\n'
        '  "score_breakdown": [\n'
        '    {"name": "Multi-market presence", "present": true, "impact": 1.5, "description": "Operates in 10+ markets"},\n'
        '    {"name": "Single PSP / no redundancy", "present": true, "impact": 1.5, "description": "Only one PSP globally"},\n'
        '    {"name": "Missing APMs in key markets", "present": true, "impact": 1.5, "description": "No Pix in Brazil"},\n'
        '    {"name": "Cross-border processing", "present": true, "impact": 1.0, "description": "No local entities in key markets"},\n'
        '    {"name": "Customer payment complaints", "present": false, "impact": 0, "description": "No significant complaints"},\n'
        '    {"name": "Active expansion plans", "present": true, "impact": 1.0, "description": "Entering new markets"},\n'
        '    {"name": "No payment orchestrator", "present": true, "impact": 1.0, "description": "No orchestration layer detected"},\n'
        '    {"name": "Strong financial health", "present": true, "impact": 0.5, "description": "Recently funded"}\n'
        "  ],\n"
        '  "executive_summary": "3-4 sentence summary of why this is or is not a good prospect",\n'
        '  "talking_points": ["Specific, personalized talking point referencing a real finding"]\n'
        "}\n\n"
        "The opportunity_score should be between 1-10 based on the sum of impact scores in score_breakdown, "
        "normalized to 10. Give five talking points. Each must be specific, referencing actual findings, "
        "and start with a specific observation."
    )


def get_domains_prompt(company_name: str, domain: str) -> str:
    return (
        "You are a domain researcher. Your task is to find all the country-specific and regional domains that "
        f'the company "{company_name}" operates under, in addition to the domain "{domain}" that was already provided.\n\n'
        "Look for:\n"
        "- Country-specific TLDs (e.g. example.com.br, example.com.mx, example.co, example.pe, example.cl)\n"
        "- Regional variants (e.g. .com.ar, .com.pe, .co, .cl, .mx)\n"
        "- Other top-level domains the company uses if they serve the main product\n\n"
        "Important rules:\n"
        f'- Do NOT include "{domain}" in the results (it was already provided)\n'
        "- Only include domains that are actually active/real for this company\n"
        "- Focus on e-commerce/product domains, not social media or press domains\n"
        "- Do NOT include CDN, tracking, or infrastructure domains\n\n"
        "Respond with ONLY a valid JSON object in this exact format:\n"
        '{"domains": ["domain1.com", "domain2.com.br"]}\n\n'
        'If no additional domains are found, return: {"domains": []}'
    )


def get_structure_prompt(module_id: ModuleId, input: ResearchInput, research_text: str) -> str:
    return (
        "Reformat the research notes below into the JSON structure requested in the original task. "
        "Return ONLY the JSON object. Do not add facts that are not in the notes; use null or empty "
        "lists where the notes are silent.\n\n"
        f"ORIGINAL TASK:\n{_module_body(module_id, input)}\n\n"
        f"RESEARCH NOTES:\n{research_text}"
    )
