from src.emulator.document_table import DocumentServer, DocumentTable
from src.emulator.err_code import ErrCode


def new_table():
    return DocumentTable("people")


def test_put_assigns_increasing_revisions():
    t = new_table()
    r1 = t.put("0", {"name": "Charlie"})
    assert r1.ok
    assert r1.value["rev"].startswith("1-")

    r2 = t.put("0", {"_rev": r1.value["rev"], "name": "Charlie II"})
    assert r2.ok
    assert r2.value["rev"].startswith("2-")

    doc = t.get("0").value
    assert doc == {"_id": "0", "_rev": r2.value["rev"], "name": "Charlie II"}


def test_put_conflicts():
    t = new_table()
    rev = t.put("0", {"name": "Charlie"}).value["rev"]

    # existing id without a revision
    assert t.put("0", {"name": "Dup"}).err == ErrCode.DOC_CONFLICT
    t.put("0", {"_rev": rev, "name": "Next"})
    # stale revision
    assert t.put("0", {"_rev": rev, "name": "Stale"}).err == ErrCode.DOC_CONFLICT
    # revision for a document that never existed
    assert t.put("1", {"_rev": rev, "name": "Ghost"}).err == ErrCode.DOC_CONFLICT
    assert t.get("0").value["name"] == "Next"


def test_put_rejects_bad_input():
    t = new_table()
    assert t.put("_secret", {}).err == ErrCode.INVALID_ARGUMENT
    assert t.put("0", {"_attachments": {}}).err == ErrCode.INVALID_ARGUMENT
    assert t.put("0", {"_rev": "not-a-rev"}).err == ErrCode.INVALID_ARGUMENT
    assert t.put("_design/find", {"views": {}}).ok


def test_delete_leaves_tombstone():
    t = new_table()
    rev = t.put("0", {"name": "Charlie"}).value["rev"]

    assert t.delete("0", None).err == ErrCode.DOC_CONFLICT
    assert t.delete("0", "1-abc").err == ErrCode.DOC_CONFLICT
    deleted = t.delete("0", rev)
    assert deleted.ok
    assert deleted.value["rev"].startswith("2-")

    res = t.get("0")
    assert not res.ok
    assert res.err == ErrCode.DOC_DELETED
    assert t.delete("0", deleted.value["rev"]).err == ErrCode.DOC_DELETED
    assert t.delete("1", rev).err == ErrCode.DOC_NOT_FOUND

    # a tombstone can be recreated without a revision
    recreated = t.put("0", {"name": "Charlie again"})
    assert recreated.ok
    assert recreated.value["rev"].startswith("3-")


def test_stored_documents_are_copies():
    t = new_table()
    body = {"tags": ["a"]}
    t.put("0", body)
    body["tags"].append("b")
    doc = t.get("0").value
    doc["tags"].append("c")
    assert t.get("0").value["tags"] == ["a"]


def test_bulk_get():
    t = new_table()
    rev = t.put("0", {"name": "Charlie"}).value["rev"]
    t.put("1", {"name": "Mary"})
    t.delete("0", rev)

    results = t.bulk_get(["1", "0", "lorem"])
    assert [r["id"] for r in results] == ["1", "0", "lorem"]
    assert results[0]["docs"][0]["ok"]["name"] == "Mary"
    assert results[1]["docs"][0]["ok"]["_deleted"] is True
    assert results[2]["docs"][0]["error"]["error"] == "not_found"


def test_bulk_docs_reports_per_document():
    t = new_table()
    rev = t.put("0", {"name": "Charlie"}).value["rev"]

    results = t.bulk_docs([
        {"_id": "0", "_rev": rev, "_deleted": True},
        {"_id": "1", "_rev": "1-abc", "_deleted": True},
        {"_id": "2", "name": "David"},
        {"name": "Generated"},
    ])
    assert results[0]["ok"] is True
    assert results[1] == {"id": "1", "error": "not_found", "reason": "missing"}
    assert results[2]["ok"] is True
    assert len(results[3]["id"]) == 32
    assert t.info()["doc_count"] == 2
    assert t.info()["doc_del_count"] == 1


def test_find_pages_with_bookmarks():
    t = new_table()
    for i in range(5):
        t.put(str(i), {"kind": "x", "n": i})
    t.put("other", {"kind": "y"})
    t.put("_design/find", {"kind": "x"})

    first = t.find({"kind": "x"}, limit=2).value
    assert [d["_id"] for d in first["docs"]] == ["0", "1"]
    second = t.find({"kind": "x"}, limit=2, bookmark=first["bookmark"]).value
    assert [d["_id"] for d in second["docs"]] == ["2", "3"]
    third = t.find({"kind": "x"}, limit=2, bookmark=second["bookmark"]).value
    assert [d["_id"] for d in third["docs"]] == ["4"]

    skipped = t.find({"kind": "x"}, limit=10, skip=3, fields=["_id", "n"]).value
    assert skipped["docs"] == [{"_id": "3", "n": 3}, {"_id": "4", "n": 4}]

    assert t.find({"kind": "x"}, limit=1, bookmark="!!").err == ErrCode.INVALID_ARGUMENT
    assert t.find({"n": {"$bogus": 1}}, limit=1).err == ErrCode.INVALID_ARGUMENT


def test_all_docs_and_indexes():
    t = new_table()
    t.put("b", {"n": 1})
    rev = t.put("a", {"n": 2}).value["rev"]
    t.put("c", {"n": 3})
    t.delete("a", rev)

    listing = t.all_docs(include_docs=True)
    assert listing["total_rows"] == 2
    assert [row["id"] for row in listing["rows"]] == ["b", "c"]
    assert listing["rows"][0]["doc"]["n"] == 1

    assert t.create_index(["docType"], "docType-index", None)["result"] == "created"
    assert t.create_index(["docType"], "docType-index", None)["result"] == "exists"


def test_server_databases():
    server = DocumentServer()
    assert server.create("people").ok
    assert server.create("people").err == ErrCode.DB_EXISTS
    assert server.create("People").err == ErrCode.ILLEGAL_DB_NAME
    assert server.create("1db").err == ErrCode.ILLEGAL_DB_NAME
    assert server.get("people").ok
    assert server.names() == ["people"]
    assert server.delete("people").ok
    assert server.delete("people").err == ErrCode.DB_NOT_FOUND
    assert server.get("people").err == ErrCode.DB_NOT_FOUND
