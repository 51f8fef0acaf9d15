from tests.fakes.fake_note_store import InMemoryNoteStore, make_note

__all__ = ["InMemoryNoteStore", "make_note"]
