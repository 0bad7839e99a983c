# /flowchat/config/strings.py

# User-facing strings, kept in one place so they can be localized without
# touching the pipeline code.

PLACEHOLDER_TEXT = "processing…"

# Marker that prefixes every error-formatted assistant message.
ERROR_PREFIX = "⚠️ เกิดข้อผิดพลาด: "

ERROR_COMPLETION_FAILED = "The assistant could not generate an answer right now. Please try again."

# Injected into the grounding context when retrieval was attempted but failed,
# so the model does not pretend to have supporting documents.
NO_RESULTS_MARKER = "[No supporting documents were found for this question.]"

RETRIEVAL_DEGRADED_HINT = "No supporting documents could be retrieved; this answer is not grounded in the knowledge base."

RETRIEVAL_EMPTY_HINT = "No documents matched this question closely enough."

LOW_CONFIDENCE_LANGUAGE_HINT = "The input language could not be identified reliably."

NO_SIMILAR_CASE_TEXT = "ยังไม่เคยพบเคสนี้ ไม่สามารถให้คำตอบได้"

POPUP_FAILED_NOTICE = "The related record could not be opened. You can find it in the workflow inbox."

POPUP_NO_RECORDS_NOTICE = "This answer has no related records to open."

RECORD_CREATED = "✅ Record {record_id} was created in {process_id}."

RECORD_FAILED_NOTICE = "The record could not be created: {reason}. Your answer above is unaffected."

RECORD_DRAFT_READY = "A record draft is ready. Review the fields and confirm to submit it."

LEAVE_BALANCE_SUMMARY = "Leave balance for {email}: {balances}"

LEAVE_BALANCE_NOT_FOUND = "No leave balance was found for {email}."

DEMO_USER_ID = "demo-user"
DEMO_USER_NAME = "Demo User"
DEMO_USER_EMAIL = "demo@example.com"
