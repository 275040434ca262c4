"""Prompt templates sent to the generative model."""

CLASSIFICATION_PROMPT = """
Analyze this image/document carefully. It is uploaded to a Healthcare Finance Dashboard.

Return ONLY a valid JSON object with no markdown formatting, following this structure:
{
  "isValid": boolean,
  "type": "bill" | "insurance" | "other",
  "summary": "Short 1-sentence summary of content",
  "extractedData": {
    "amount": number | null,
    "date": string | null,
    "hospitalName": string | null,
    "documentType": string | null,
    "policyNumber": string | null,
    "coverageType": string | null,
    "provider": string | null
  }
}

Field guidance:
- isValid: true only for a genuine healthcare bill or insurance document.
- amount: the total amount if it is a bill, as a plain number without currency symbols.
- date: the date of service or of the bill, formatted YYYY-MM-DD.
- hospitalName: the name of the provider that issued the bill.
- documentType: e.g. "Invoice", "Policy", "Claim", "Insurance Card".
- policyNumber, coverageType ("Medical", "Dental", "Vision") and provider ("UHC", "Aetna",
  "Blue Cross") apply to insurance documents.
Use null for anything you cannot read confidently.
""".strip()


BILL_ANALYSIS_PROMPT = """
Analyze this hospital bill image/document in detail.

Extract the following information and return ONLY a valid JSON object:

1. Overview: total amount, patient name (if visible), hospital name, and date. Provide a brief summary.
2. Services: an itemized list of ALL services, procedures, or medications listed, with their
   individual charges. If codes (CPT/HCPCS) are present, include them.
3. Coverage Prediction: estimate the amount insurance will cover and the amount the patient owes.
   If an insurance policy context is provided below, APPLY its deductibles, co-insurance, copays,
   covered benefits and exclusions to the estimate and explain how. If no policy context is
   provided, set confidence to "Low", set estimatedInsuranceCoverage to 0 and explain that no
   policy was available.
4. Schemes: identify and explain any insurance terms mentioned (Deductible, Co-pay, Co-insurance,
   Out-of-Pocket Max). If not explicitly mentioned, explain how these standard concepts apply.

JSON Structure:
{
  "overview": {
    "totalAmount": number,
    "patientName": string | null,
    "hospitalName": string | null,
    "date": string | null,
    "summary": string
  },
  "services": [
    { "name": "Service Description", "charge": number, "code": "optional code" }
  ],
  "coveragePrediction": {
    "estimatedInsuranceCoverage": number,
    "estimatedPatientResponsibility": number,
    "confidence": "High" | "Medium" | "Low",
    "reasoning": "Explanation..."
  },
  "schemes": [
    { "name": "Term Name", "description": "What it means", "value": "Value found or 'N/A'" }
  ]
}

Amounts are plain numbers without currency symbols. Dates are YYYY-MM-DD.
""".strip()


INSURANCE_ANALYSIS_PROMPT = """
Analyze this insurance policy document in detail.

Return ONLY a valid JSON object with no markdown formatting, following this structure:
{
  "overview": {
    "policyNumber": string | null,
    "insurerName": string | null,
    "policyHolder": string | null,
    "effectiveDate": string | null,
    "expirationDate": string | null,
    "summary": "Two-sentence plain-language summary of the policy"
  },
  "financials": {
    "deductible": { "individual": string | number | null, "family": string | number | null },
    "outOfPocketMax": { "individual": string | number | null, "family": string | number | null },
    "coinsuranceRate": { "inNetwork": string | null, "outOfNetwork": string | null },
    "copay": { "pcp": string | number | null, "specialist": string | number | null, "er": string | number | null }
  },
  "coverage": [
    { "type": "Coverage type", "limit": string | number, "deductible": string | number | null, "copay": string | number | null }
  ],
  "benefits": [
    { "category": "Benefit category", "description": "What is provided", "covered": boolean }
  ],
  "exclusions": [
    { "item": "Excluded service", "reason": "Why it is excluded" }
  ],
  "recommendations": [
    { "title": "Short title", "description": "Actionable advice", "priority": "High" | "Medium" | "Low" }
  ]
}

Only report values printed in the document; use null when a value is absent.
""".strip()


CHAT_SYSTEM_PROMPT = """
You are a helpful AI Health Assistant for a healthcare finance portal.
Your role is to help users understand their healthcare coverage, explain medical bills, answer
insurance questions, and provide general health information.
Use the user's personal context (bills, insurance, profile) when it is provided.
Be friendly, helpful, and concise. If you see any error messages in the conversation history,
ignore them - they were technical glitches that have been resolved.
Now respond to the user's message.
""".strip()
