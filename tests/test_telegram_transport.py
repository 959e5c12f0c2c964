from transports.telegram_bot import TelegramTransport


def test_updates_from_different_users_run_concurrently(wallet_bot):
    transport = TelegramTransport(wallet_bot, "123456:ABC-DEF1234ghIkl-zyx57W2v1u123ew11")

    assert transport.application.concurrent_updates > 1
