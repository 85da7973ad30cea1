"""Fraud-risk scoring for healthcare insurance claims.

Usage:
    from claimrisk.claims import ClaimProcessor
    from claimrisk.store import SQLiteClaimStore

    processor = ClaimProcessor(SQLiteClaimStore("./data/claimrisk.db"))
    result = processor.process_claim(submission)

Run the HTTP service with:
    uvicorn claimrisk.app:app --host 0.0.0.0 --port 8080
"""

__version__ = "0.1.0"
