from mocards.services.card_repository import SqlCardRepository


def test_system_init(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["system", "init"])
    assert result.exit_code == 0
    assert "Database ready" in result.output


def test_generate_cards_in_pages(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["cards", "generate", "--count", "5", "--page-size", "2", "--requested-by", "ops"])

    assert result.exit_code == 0, result.output
    assert "Minted 5 cards in 3 batches" in result.output


def test_generate_rejects_bad_count(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["cards", "generate", "--count", "0"])
    assert result.exit_code != 0
    assert "VALIDATION_ERROR" in result.output


def test_lookup_command(app, db_session):
    runner = app.test_cli_runner()
    runner.invoke(args=["cards", "generate", "--count", "1"])
    card = SqlCardRepository(db_session).list_cards()[0]

    result = runner.invoke(args=["cards", "lookup", card.control_number])
    assert result.exit_code == 0, result.output
    assert card.control_number in result.output
    assert "8 of 8 perks remaining" in result.output

    missing = runner.invoke(args=["cards", "lookup", "MOC-00000000-001"])
    assert missing.exit_code == 1
    assert "not found" in missing.output


def test_expire_command(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["cards", "expire", "--as-of", "2030-01-01T00:00:00Z"])
    assert result.exit_code == 0
    assert "Expired 0 card(s)" in result.output

    bad = runner.invoke(args=["cards", "expire", "--as-of", "next tuesday"])
    assert bad.exit_code == 2


def test_clinic_commands(app, db_session):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["clinics", "create", "--name", "Smile Dental", "--plan", "enterprise"])
    assert result.exit_code == 0, result.output
    assert "code:     SMI" in result.output
    assert "password:" in result.output

    listed = runner.invoke(args=["clinics", "list"])
    assert "Smile Dental" in listed.output
    assert "enterprise" in listed.output

    bad_plan = runner.invoke(args=["clinics", "create", "--name", "X", "--plan", "gold"])
    assert bad_plan.exit_code == 2
