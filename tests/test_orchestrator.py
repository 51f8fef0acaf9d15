import asyncio

from kinsync.domain.relationships import GraphStats
from kinsync.sync.claims import FileClaimRegistry
from kinsync.sync.debouncer import SyncState
from kinsync.sync.orchestrator import SyncOrchestrator
from tests.fakes import InMemoryNoteStore, make_note
from tests.fakes.vault import ALICE, ALICE_UID, BOB, BOB_UID, CAROL

KID = "Contacts/Kid Doe.md"


def related_fields(record: dict) -> dict:
    return {key: value for key, value in record.items() if key.startswith("RELATED")}


def single_note_orchestrator(text: str) -> tuple[InMemoryNoteStore, SyncOrchestrator]:
    store = InMemoryNoteStore({KID: text})
    return store, SyncOrchestrator(store=store, debounce_seconds=0, claims=FileClaimRegistry())


async def test_markdown_addition_takes_next_index_and_keeps_existing_entry() -> None:
    store, orchestrator = single_note_orchestrator(
        make_note(
            {"FN": "Kid Doe", "RELATED[parent]": "name:Jane Doe"},
            "## Related\n- father [[Bob Doe]]\n",
        )
    )

    result = await orchestrator.sync_from_markdown(KID, debounce=False)

    assert result.changed
    record = store.frontmatter(KID)
    assert related_fields(record) == {
        "RELATED[parent]": "name:Jane Doe",
        "RELATED[1:parent]": "name:Bob Doe",
    }
    assert "REV" in record


async def test_duplicate_markdown_lines_collapse() -> None:
    store, orchestrator = single_note_orchestrator(
        make_note(
            {"FN": "Kid Doe"},
            "## Related\n- friend [[Alice]]\n- friend [[Bob]]\n- friend [[Alice]]\n",
        )
    )

    await orchestrator.sync_from_markdown(KID, debounce=False)

    assert related_fields(store.frontmatter(KID)) == {
        "RELATED[friend]": "name:Alice",
        "RELATED[1:friend]": "name:Bob",
    }


async def test_repeated_sync_without_changes_writes_nothing() -> None:
    store, orchestrator = single_note_orchestrator(
        make_note({"FN": "Kid Doe"}, "## Related\n- sister [[Kim]]\n")
    )

    await orchestrator.sync_from_markdown(KID, debounce=False)
    writes = list(store.writes)
    revision = store.frontmatter(KID)["REV"]

    second = await orchestrator.sync_from_markdown(KID, debounce=False)

    assert not second.changed
    assert store.writes == writes
    assert store.frontmatter(KID)["REV"] == revision


async def test_add_only_sync_keeps_frontmatter_entries_missing_from_markdown() -> None:
    store, orchestrator = single_note_orchestrator(
        make_note(
            {"FN": "Kid Doe", "RELATED[friend]": "name:A", "RELATED[1:friend]": "name:B"},
            "## Related\n- friend [[B]]\n- colleague [[C]]\n",
        )
    )

    await orchestrator.sync_from_markdown(KID, debounce=False)

    assert related_fields(store.frontmatter(KID)) == {
        "RELATED[friend]": "name:A",
        "RELATED[1:friend]": "name:B",
        "RELATED[colleague]": "name:C",
    }


async def test_replace_sync_mirrors_markdown() -> None:
    store, orchestrator = single_note_orchestrator(
        make_note(
            {"FN": "Kid Doe", "RELATED[friend]": "name:A", "RELATED[1:friend]": "name:B"},
            "## Related\n- friend [[B]]\n- colleague [[C]]\n",
        )
    )

    await orchestrator.sync_from_markdown(KID, replace=True, debounce=False)

    assert related_fields(store.frontmatter(KID)) == {
        "RELATED[friend]": "name:B",
        "RELATED[colleague]": "name:C",
    }


async def test_non_contact_notes_are_skipped() -> None:
    store = InMemoryNoteStore({"Contacts/readme.md": "## Related\n- friend [[A]]\n"})
    orchestrator = SyncOrchestrator(store=store, claims=FileClaimRegistry())

    result = await orchestrator.sync_from_markdown("Contacts/readme.md", debounce=False)

    assert result.skipped
    assert store.writes == []


async def test_initialize_repairs_missing_reciprocal(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith", "GENDER": "F", "RELATED[friend]": "name:Bob Smith"},
        "# Alice\n",
    )

    result = await orchestrator.initialize()

    assert result.processed == 3
    assert result.repaired == 1
    assert result.errors == []
    assert orchestrator.graph.has_edge(BOB_UID, ALICE_UID, "friend")
    assert orchestrator.graph.find_missing_reciprocals() == []
    assert store.frontmatter(BOB)["RELATED[friend]"] == f"uid:{ALICE_UID}"
    assert "- friend [[Alice Smith]]" in store.notes[BOB]
    assert ALICE not in store.writes


async def test_markdown_sync_propagates_reciprocal_and_gender(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    await orchestrator.initialize()
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith", "GENDER": "F"},
        "# Alice\n\n## Related\n- son [[Bob Smith]]\n",
    )

    result = await orchestrator.sync_from_markdown(ALICE, debounce=False)

    assert result.propagated == [BOB]
    assert store.frontmatter(ALICE)["RELATED[child]"] == f"urn:uuid:{BOB_UID}"
    bob = store.frontmatter(BOB)
    assert bob["RELATED[parent]"] == f"uid:{ALICE_UID}"
    assert bob["GENDER"] == "M"
    assert "REV" in bob
    assert "- mother [[Alice Smith]]" in store.notes[BOB]
    assert orchestrator.graph.has_edge(ALICE_UID, BOB_UID, "child")
    assert orchestrator.graph.has_edge(BOB_UID, ALICE_UID, "parent")


async def test_own_writes_do_not_retrigger_sync(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    await orchestrator.initialize()

    await store.modify(
        ALICE,
        make_note(
            {"UID": ALICE_UID, "FN": "Alice Smith", "GENDER": "F"},
            "# Alice\n\n## Related\n- son [[Bob Smith]]\n",
        ),
    )
    assert orchestrator.state_of(ALICE) == SyncState.DEBOUNCING
    await orchestrator.debouncer.drain()

    assert store.frontmatter(BOB)["RELATED[parent]"] == f"uid:{ALICE_UID}"
    # One user edit plus one frontmatter patch; frontmatter plus body for the reciprocal.
    assert store.writes.count(ALICE) == 2
    assert store.writes.count(BOB) == 2
    assert orchestrator.state_of(ALICE) == SyncState.IDLE
    assert orchestrator.state_of(BOB) == SyncState.IDLE

    writes = list(store.writes)
    orchestrator.handle_change(ALICE)
    orchestrator.handle_change(BOB)
    await orchestrator.debouncer.drain()

    assert store.writes == writes


async def test_claimed_and_locked_files_are_skipped(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator, claims: FileClaimRegistry
) -> None:
    await orchestrator.initialize()
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith"}, "## Related\n- friend [[Dana]]\n"
    )

    orchestrator.mark_file_as_updating(ALICE)
    assert claims.is_claimed(ALICE)
    claimed = await orchestrator.sync_from_markdown(ALICE, debounce=False)
    orchestrator.handle_change(ALICE)
    orchestrator.unmark_file_as_updating(ALICE)

    orchestrator.processing_files.add(ALICE)
    locked = await orchestrator.sync_from_frontmatter(ALICE)
    orchestrator.processing_files.discard(ALICE)

    assert claimed.skipped and claimed.reason == "claimed"
    assert locked.skipped and locked.reason == "locked"
    assert not orchestrator.debouncer.is_pending(ALICE)
    assert not orchestrator.is_file_being_updated(ALICE)
    assert store.writes == []


async def test_reciprocal_to_claimed_note_is_repaired_later(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    await orchestrator.initialize()
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith"}, "## Related\n- friend [[Bob Smith]]\n"
    )

    orchestrator.mark_file_as_updating(BOB)
    result = await orchestrator.sync_from_markdown(ALICE, debounce=False)
    orchestrator.unmark_file_as_updating(BOB)

    assert result.propagated == []
    assert not orchestrator.graph.has_edge(BOB_UID, ALICE_UID, "friend")
    assert BOB not in store.writes

    repaired = await orchestrator.ensure_consistency()

    assert repaired.repaired == 1
    assert store.frontmatter(BOB)["RELATED[friend]"] == f"uid:{ALICE_UID}"


async def test_inferred_gender_never_overwrites_recorded_gender(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    await orchestrator.initialize()
    store.notes[BOB] = make_note(
        {"UID": BOB_UID, "FN": "Bob Smith"}, "## Related\n- brother [[Alice Smith]]\n"
    )

    await orchestrator.sync_from_markdown(BOB, debounce=False)

    alice = store.frontmatter(ALICE)
    assert alice["GENDER"] == "F"
    assert alice["RELATED[sibling]"] == f"urn:uuid:{BOB_UID}"


async def test_prevent_cascade_skips_propagation(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    await orchestrator.initialize()
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith"}, "## Related\n- friend [[Bob Smith]]\n"
    )

    result = await orchestrator.sync_from_markdown(ALICE, prevent_cascade=True, debounce=False)

    assert result.changed
    assert result.propagated == []
    assert BOB not in store.writes


async def test_equivalent_name_reference_is_upgraded_not_duplicated(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith", "RELATED[child]": "name:Bob Smith"},
        "## Related\n- son [[Bob Smith]]\n",
    )
    await orchestrator.initialize()

    result = await orchestrator.sync_from_markdown(ALICE, debounce=False)

    assert result.added == []
    assert related_fields(store.frontmatter(ALICE)) == {"RELATED[child]": f"urn:uuid:{BOB_UID}"}


async def test_sync_from_frontmatter_renders_gendered_list(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    store.notes[ALICE] = make_note(
        {
            "UID": ALICE_UID,
            "FN": "Alice Smith",
            "RELATED[child]": f"urn:uuid:{BOB_UID}",
            "RELATED[friend]": "name:Dana",
        },
        "# Alice\n",
    )
    store.notes[BOB] = make_note({"UID": BOB_UID, "FN": "Bob Smith", "GENDER": "M"}, "# Bob\n")
    await orchestrator.initialize()

    result = await orchestrator.sync_from_frontmatter(ALICE)

    assert result.changed
    assert store.notes[ALICE].endswith(
        "## Related\n- friend [[Dana]]\n- son [[Bob Smith]]\n\n# Alice\n"
    )
    assert "REV" not in store.frontmatter(ALICE)
    writes = len(store.writes)
    again = await orchestrator.sync_from_frontmatter(ALICE)
    assert not again.changed
    assert len(store.writes) == writes


async def test_sync_all_syncs_both_directions_and_repairs(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator, notices: list[str]
) -> None:
    store.notes[CAROL] = make_note(
        {"N.GN": "Carol", "N.FN": "Jones"}, "## Related\n- colleague [[Alice Smith]]\n"
    )
    await orchestrator.initialize()

    result = await orchestrator.sync_all()

    assert result.processed == 3
    assert result.errors == []
    assert store.frontmatter(CAROL)["RELATED[colleague]"] == f"uid:{ALICE_UID}"
    assert store.frontmatter(ALICE)["RELATED[colleague]"] == "name:Carol Jones"
    assert "- colleague [[Carol Jones]]" in store.notes[ALICE]
    assert notices == []


async def test_batch_operations_collect_errors(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator, notices: list[str]
) -> None:
    store.fail_on.add(CAROL)

    loaded = await orchestrator.initialize()
    synced = await orchestrator.sync_all()

    assert loaded.processed == 2
    assert len(loaded.errors) == 1
    assert synced.processed == 2
    assert len(synced.errors) == 1
    assert CAROL in synced.errors[0]
    assert notices == []


async def test_interactive_failure_notifies_once(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator, notices: list[str]
) -> None:
    store.fail_on.add(ALICE)

    result = await orchestrator.sync_from_markdown(ALICE, debounce=False)

    assert result.error is not None
    assert len(notices) == 1
    assert ALICE not in orchestrator.processing_files
    assert orchestrator.state_of(ALICE) == SyncState.IDLE


async def test_debounced_calls_coalesce(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    await orchestrator.initialize()
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith"}, "## Related\n- friend [[Dana]]\n"
    )

    first = asyncio.create_task(orchestrator.sync_from_markdown(ALICE))
    await asyncio.sleep(0)
    assert orchestrator.state_of(ALICE) == SyncState.DEBOUNCING
    second = asyncio.create_task(orchestrator.sync_from_markdown(ALICE))
    superseded, final = await asyncio.gather(first, second)

    assert superseded.skipped
    assert superseded.reason == "superseded"
    assert final.changed
    assert store.writes.count(ALICE) == 1


async def test_handle_delete_and_stats(orchestrator: SyncOrchestrator) -> None:
    await orchestrator.initialize()
    assert orchestrator.get_graph_stats() == GraphStats(nodes=3, edges=0)

    orchestrator.handle_delete(CAROL)

    assert orchestrator.get_graph_stats() == GraphStats(nodes=2, edges=0)
    assert orchestrator.graph.by_path(CAROL) is None


async def test_shutdown_cancels_pending_work(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    await orchestrator.initialize()
    orchestrator.handle_change(ALICE)
    assert orchestrator.state_of(ALICE) == SyncState.DEBOUNCING

    await orchestrator.shutdown()

    assert orchestrator.state_of(ALICE) == SyncState.IDLE
    assert orchestrator.get_graph_stats() == GraphStats(nodes=0, edges=0)
    await asyncio.sleep(0.1)
    assert store.writes == []


async def test_reciprocal_skipped_during_repair_is_retried(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator, claims: FileClaimRegistry
) -> None:
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith", "RELATED[friend]": "name:Bob Smith"}
    )
    claims.claim(BOB)

    first = await orchestrator.initialize()

    assert first.repaired == 0
    assert not orchestrator.graph.has_edge(BOB_UID, ALICE_UID, "friend")
    assert BOB not in store.writes

    claims.release(BOB)
    second = await orchestrator.ensure_consistency()

    assert second.repaired == 1
    assert store.frontmatter(BOB)["RELATED[friend]"] == f"uid:{ALICE_UID}"


async def test_reciprocal_that_failed_to_write_is_retried(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    await orchestrator.initialize()
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith"}, "## Related\n- friend [[Bob Smith]]\n"
    )
    await orchestrator.sync_from_markdown(ALICE, prevent_cascade=True, debounce=False)
    store.fail_on.add(BOB)

    failed = await orchestrator.ensure_consistency()

    assert failed.repaired == 0
    assert len(failed.errors) == 1
    assert orchestrator.graph.find_missing_reciprocals() != []

    store.fail_on.clear()
    retried = await orchestrator.ensure_consistency()

    assert retried.repaired == 1
    assert retried.errors == []
    assert store.frontmatter(BOB)["RELATED[friend]"] == f"uid:{ALICE_UID}"


class ClaimDuringReadStore(InMemoryNoteStore):
    """Note store where another writer claims a note while its frontmatter is being read."""

    def __init__(self, notes: dict[str, str], claims: FileClaimRegistry, path: str) -> None:
        super().__init__(notes)
        self.claims = claims
        self.claim_path = path

    async def get_frontmatter(self, path: str) -> dict:
        record = await super().get_frontmatter(path)
        if path == self.claim_path:
            self.claims.claim(path)
        return record


async def test_note_claimed_mid_sync_is_not_overwritten() -> None:
    claims = FileClaimRegistry()
    store = ClaimDuringReadStore(
        {
            ALICE: make_note(
                {"UID": ALICE_UID, "FN": "Alice Smith", "RELATED[friend]": "name:Dana"},
                "## Related\n- colleague [[Erin]]\n",
            )
        },
        claims,
        ALICE,
    )
    orchestrator = SyncOrchestrator(store=store, claims=claims)

    rendered = await orchestrator.sync_from_frontmatter(ALICE)
    claims.release(ALICE)
    synced = await orchestrator.sync_from_markdown(ALICE, debounce=False)

    assert rendered.skipped and rendered.reason == "claimed"
    assert synced.skipped and synced.reason == "claimed"
    assert store.writes == []
    assert ALICE not in orchestrator.processing_files


async def test_ambiguous_names_are_not_upgraded(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    store.notes["Contacts/Work/Bob Smith.md"] = make_note({"UID": "bob-2", "FN": "Bob Smith"})
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith", "RELATED[friend]": "name:Bob Smith"}
    )
    await orchestrator.initialize()

    result = await orchestrator.sync_from_markdown(ALICE, debounce=False)

    assert not result.changed
    assert store.frontmatter(ALICE)["RELATED[friend]"] == "name:Bob Smith"


async def test_sync_all_upgrades_name_references(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    store.notes[CAROL] = make_note(
        {"N.GN": "Carol", "N.FN": "Jones", "RELATED[colleague]": "name:alice smith"}
    )
    await orchestrator.initialize()

    await orchestrator.sync_all()

    assert related_fields(store.frontmatter(CAROL)) == {"RELATED[colleague]": f"uid:{ALICE_UID}"}
    assert store.frontmatter(ALICE)["RELATED[colleague]"] == "name:Carol Jones"


async def test_reciprocal_written_as_gendered_term_is_not_missing(
    store: InMemoryNoteStore, orchestrator: SyncOrchestrator
) -> None:
    store.notes[ALICE] = make_note(
        {"UID": ALICE_UID, "FN": "Alice Smith", "GENDER": "F", "RELATED[child]": "name:Bob Smith"}
    )
    store.notes[BOB] = make_note(
        {"UID": BOB_UID, "FN": "Bob Smith"}, "## Related\n- mother [[Alice Smith]]\n"
    )

    result = await orchestrator.initialize()

    assert result.repaired == 0
    assert orchestrator.graph.has_edge(BOB_UID, ALICE_UID, "parent")
    assert orchestrator.graph.find_missing_reciprocals() == []
    assert store.writes == []
