from datetime import date

import pytest

import repository
from database import Account, Transaction, Vendor
from statements import StatementAccount


def _vendor(db, name):
    return db.query(Vendor).filter(Vendor.name == name).one()


def test_import_creates_account_vendors_and_transactions(db, may_statement):
    result = repository.import_statement(db, may_statement)

    assert result.inserted == 7
    assert result.skipped == 0
    assert result.new_vendors == 5

    account = db.get(Account, result.account_id)
    assert (account.name, account.clearing_number, account.account_number) == ("Allkonto", "6789", "123 456 789")
    assert db.query(Transaction).count() == 7
    ica = _vendor(db, "ICA KVANTUM")
    assert sorted(t.amount for t in ica.transactions) == [-45050, -12000]


def test_reimporting_overlapping_statement_skips_known_rows(db, may_statement, make_statement):
    repository.import_statement(db, may_statement)

    overlapping = make_statement([
        (date(2024, 6, 1), "Hyresvärden", -900_000, 5_070_950),
        (date(2024, 6, 3), "ICA KVANTUM", -5_000, 5_065_950),
    ])
    result = repository.import_statement(db, overlapping)

    assert (result.inserted, result.skipped, result.new_vendors) == (1, 1, 0)
    assert db.query(Transaction).count() == 8
    assert db.query(Account).count() == 1


def test_identical_rows_in_one_statement_are_both_kept(db, make_statement):
    rows = [
        (date(2024, 5, 2), "Pressbyrån", -3_500, None),
        (date(2024, 5, 2), "Pressbyrån", -3_500, None),
    ]
    assert repository.import_statement(db, make_statement(rows)).inserted == 2
    # and a second import of the same file adds nothing
    assert repository.import_statement(db, make_statement(rows)).inserted == 0


def test_other_account_gets_its_own_rows(db, may_statement, make_statement):
    repository.import_statement(db, may_statement)
    savings = StatementAccount(clearing_number="6789", account_number="987 654 321", name="Sparkonto")

    result = repository.import_statement(
        db, make_statement([(date(2024, 6, 1), "Hyresvärden", -900_000, 5_070_950)], savings)
    )

    assert result.inserted == 1
    assert db.query(Account).count() == 2


def test_import_uses_vendor_category_for_new_transactions(db, may_statement, make_statement):
    repository.import_statement(db, may_statement)
    groceries = repository.create_category(db, "Groceries")
    repository.set_vendor_category(db, _vendor(db, "ICA KVANTUM").id, groceries.id)

    repository.import_statement(db, make_statement([(date(2024, 6, 3), "ICA KVANTUM", -5_000, 5_065_950)]))

    newest = repository.list_transactions(db, vendor_ids=[_vendor(db, "ICA KVANTUM").id])[0]
    assert newest.transaction_date == date(2024, 6, 3)
    assert newest.category_id == groceries.id


def test_set_vendor_category_fills_only_uncategorized_transactions(db, may_statement):
    repository.import_statement(db, may_statement)
    groceries = repository.create_category(db, "Groceries")
    treats = repository.create_category(db, "Treats")
    ica = _vendor(db, "ICA KVANTUM")
    first, second = sorted(ica.transactions, key=lambda t: t.transaction_date)
    repository.set_transaction_category(db, second.id, treats.id)

    updated = repository.set_vendor_category(db, ica.id, groceries.id)

    assert updated == 1
    assert repository.get_transaction(db, first.id).category_id == groceries.id
    assert repository.get_transaction(db, second.id).category_id == treats.id
    assert _vendor(db, "ICA KVANTUM").category_id == groceries.id


def test_clearing_vendor_category_leaves_transactions_alone(db, may_statement):
    repository.import_statement(db, may_statement)
    groceries = repository.create_category(db, "Groceries")
    ica = _vendor(db, "ICA KVANTUM")
    repository.set_vendor_category(db, ica.id, groceries.id)

    assert repository.set_vendor_category(db, ica.id, None) == 0

    assert _vendor(db, "ICA KVANTUM").category_id is None
    assert {t.category_id for t in _vendor(db, "ICA KVANTUM").transactions} == {groceries.id}


def test_set_vendor_category_unknown_ids(db, may_statement):
    repository.import_statement(db, may_statement)

    with pytest.raises(LookupError):
        repository.set_vendor_category(db, 999, None)
    with pytest.raises(LookupError):
        repository.set_vendor_category(db, _vendor(db, "SL ACCESS").id, 999)


def test_create_category_validation(db):
    repository.create_category(db, "  Transport ")

    assert [c.name for c in repository.list_categories(db)] == ["Transport"]
    with pytest.raises(ValueError):
        repository.create_category(db, "Transport")
    with pytest.raises(ValueError):
        repository.create_category(db, "   ")


def test_delete_category_uncategorizes_vendors_and_transactions(db, may_statement):
    repository.import_statement(db, may_statement)
    transport = repository.create_category(db, "Transport")
    sl = _vendor(db, "SL ACCESS")
    repository.set_vendor_category(db, sl.id, transport.id)

    repository.delete_category(db, transport.id)

    assert repository.list_categories(db) == []
    assert _vendor(db, "SL ACCESS").category_id is None
    assert all(t.category_id is None for t in _vendor(db, "SL ACCESS").transactions)


def test_list_transactions_filters(db, may_statement):
    repository.import_statement(db, may_statement)
    salary = repository.create_category(db, "Salary")
    repository.set_vendor_category(db, _vendor(db, "Arbetsgivaren AB").id, salary.id)
    ica_id = _vendor(db, "ICA KVANTUM").id

    assert len(repository.list_transactions(db)) == 7
    assert len(repository.list_transactions(db, category_ids=[salary.id])) == 2
    assert len(repository.list_transactions(db, category_ids=[None])) == 5
    assert len(repository.list_transactions(db, category_ids=[None, salary.id])) == 7
    assert len(repository.list_transactions(db, category_ids=[None], vendor_ids=[ica_id])) == 2
    assert repository.list_transactions(db, category_ids=[salary.id], vendor_ids=[ica_id]) == []

    dates = [t.transaction_date for t in repository.list_transactions(db)]
    assert dates == sorted(dates, reverse=True)


def test_insert_transaction_defaults_to_vendor_category(db, may_statement):
    result = repository.import_statement(db, may_statement)
    rent = repository.create_category(db, "Rent")
    landlord = _vendor(db, "Hyresvärden")
    repository.set_vendor_category(db, landlord.id, rent.id)

    new_id = repository.insert_transaction(db, Transaction(
        transaction_date=date(2024, 7, 1),
        amount=-900_000,
        vendor_id=landlord.id,
        account_id=result.account_id,
    ))

    assert repository.get_transaction(db, new_id).category_id == rent.id


def test_delete_and_restore_transactions(db, may_statement):
    repository.import_statement(db, may_statement)
    groceries = repository.create_category(db, "Groceries")
    repository.set_vendor_category(db, _vendor(db, "ICA KVANTUM").id, groceries.id)
    ids = [t.id for t in _vendor(db, "ICA KVANTUM").transactions]

    deleted = repository.delete_transactions(db, ids)

    assert sorted(r.id for r in deleted) == sorted(ids)
    assert db.query(Transaction).count() == 5

    assert repository.restore_transactions(db, deleted) == 2
    assert db.query(Transaction).count() == 7
    restored = repository.get_transaction(db, ids[0])
    assert restored.category_id == groceries.id
    # restoring twice is a no-op
    assert repository.restore_transactions(db, deleted) == 0


def test_delete_transactions_with_no_ids(db):
    assert repository.delete_transactions(db, []) == []


def test_rename_vendor_and_account(db, may_statement):
    result = repository.import_statement(db, may_statement)
    sl = _vendor(db, "SL ACCESS")

    repository.rename_vendor(db, sl.id, "Public transport")
    repository.rename_account(db, result.account_id, "Everyday")

    assert _vendor(db, "SL ACCESS").display_name == "Public transport"
    assert repository.get_vendor_by_name(db, "Public transport").id == sl.id
    assert db.get(Account, result.account_id).display_name == "Everyday"

    repository.rename_vendor(db, sl.id, "  ")
    assert _vendor(db, "SL ACCESS").display_name == "SL ACCESS"


def test_list_vendors_uncategorized_only(db, may_statement):
    repository.import_statement(db, may_statement)
    rent = repository.create_category(db, "Rent")
    repository.set_vendor_category(db, _vendor(db, "Hyresvärden").id, rent.id)

    names = [v.name for v in repository.list_vendors(db, uncategorized_only=True)]

    assert "Hyresvärden" not in names
    assert len(names) == 4


def test_restore_after_category_was_deleted(db, may_statement):
    repository.import_statement(db, may_statement)
    groceries = repository.create_category(db, "Groceries")
    repository.set_vendor_category(db, _vendor(db, "ICA KVANTUM").id, groceries.id)
    deleted = repository.delete_transactions(db, [t.id for t in _vendor(db, "ICA KVANTUM").transactions])
    repository.delete_category(db, groceries.id)

    assert repository.restore_transactions(db, deleted) == 2

    assert [repository.get_transaction(db, r.id).category_id for r in deleted] == [None, None]
    # the session is still usable afterwards
    assert repository.list_categories(db) == []


def test_restore_skips_rows_whose_vendor_or_account_is_gone(db, may_statement, make_statement):
    repository.import_statement(db, may_statement)
    savings = StatementAccount(clearing_number="6789", account_number="987 654 321", name="Sparkonto")
    savings_id = repository.import_statement(
        db, make_statement([(date(2024, 5, 15), "Överföring", 100_000, 100_000)], savings)
    ).account_id
    ids = [t.id for t in _vendor(db, "ICA KVANTUM").transactions]
    ids += [t.id for t in _vendor(db, "SL ACCESS").transactions]
    ids += [t.id for t in repository.list_transactions(db, account_ids=[savings_id])]
    deleted = repository.delete_transactions(db, ids)

    db.delete(_vendor(db, "ICA KVANTUM"))
    db.delete(db.get(Account, savings_id))
    db.commit()

    assert repository.restore_transactions(db, deleted) == 1

    assert len(repository.list_transactions(db, vendor_ids=[_vendor(db, "SL ACCESS").id])) == 1
    assert db.query(Transaction).count() == 5
