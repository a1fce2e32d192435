import copy
import uuid
from typing import Any, Dict, List, Protocol

InterviewRecord = Dict[str, Any]

INTERVIEWS_COLLECTION = "interviews"


class InterviewStorage(Protocol):
    def create(self, record: InterviewRecord) -> str: ...

    def save(self, interview_id: str, fields: InterviewRecord) -> None: ...

    def get(self, interview_id: str) -> InterviewRecord | None: ...

    def list_for_user(self, user_id: str) -> List[InterviewRecord]: ...

    def exists(self, interview_id: str) -> bool: ...


def _newest_first(records: List[InterviewRecord]) -> List[InterviewRecord]:
    return sorted(records, key=lambda r: str(r.get("createdAt") or ""), reverse=True)


class MemoryInterviewStorage:
    def __init__(self):
        self._records: Dict[str, InterviewRecord] = {}

    def create(self, record: InterviewRecord) -> str:
        interview_id = uuid.uuid4().hex
        self._records[interview_id] = copy.deepcopy(record)
        return interview_id

    def save(self, interview_id: str, fields: InterviewRecord) -> None:
        record = self._records.setdefault(interview_id, {})
        record.update(copy.deepcopy(fields))

    def get(self, interview_id: str) -> InterviewRecord | None:
        record = self._records.get(interview_id)
        if record is None:
            return None
        return {"id": interview_id, **copy.deepcopy(record)}

    def list_for_user(self, user_id: str) -> List[InterviewRecord]:
        records = [
            {"id": interview_id, **copy.deepcopy(record)}
            for interview_id, record in self._records.items()
            if record.get("userId") == user_id
        ]
        return _newest_first(records)

    def exists(self, interview_id: str) -> bool:
        return interview_id in self._records


class FirestoreInterviewStorage:
    """Same records, kept in the ``interviews`` Firestore collection."""

    def __init__(self, client, collection: str = INTERVIEWS_COLLECTION):
        self.client = client
        self.collection = collection

    def _ref(self, interview_id: str):
        return self.client.collection(self.collection).document(interview_id)

    def create(self, record: InterviewRecord) -> str:
        ref = self.client.collection(self.collection).document()
        ref.set(record)
        return ref.id

    def save(self, interview_id: str, fields: InterviewRecord) -> None:
        self._ref(interview_id).set(fields, merge=True)

    def get(self, interview_id: str) -> InterviewRecord | None:
        snapshot = self._ref(interview_id).get()
        if not snapshot.exists:
            return None
        return {"id": snapshot.id, **snapshot.to_dict()}

    def list_for_user(self, user_id: str) -> List[InterviewRecord]:
        query = self.client.collection(self.collection).where("userId", "==", user_id)
        return _newest_first([{"id": snap.id, **snap.to_dict()} for snap in query.stream()])

    def exists(self, interview_id: str) -> bool:
        return self._ref(interview_id).get().exists
