from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class VtbSelectors:
    """
    VTB Online is a SPA; selectors and text hooks change over time.
    Keep all DOM conventions here for easy maintenance.
    """

    # Login: phone -> SMS code -> PIN
    phone_input: str = (
        '[data-test-id="phone-input"] input, input[name="phone"], input[type="tel"][autocomplete="tel"]'
    )
    phone_submit_texts: tuple[str, ...] = ("Продолжить", "Далее", "Войти")
    otp_input: str = '[data-test-id="auth-passcode"] input[name="otpInput"], input[name="otpInput"]'
    pin_input: str = '[data-test-id="passcode"] input[name="codeInput"], input[name="codeInput"]'

    # "Session failure" interstitial and its way back to the login form.
    fatal_error_banner: str = '[data-test-id="error-page"], [data-test-id="fatal-error"]'
    fatal_error_texts: tuple[str, ...] = (
        "Что-то пошло не так",
        "Сессия завершена",
        "Произошла ошибка",
    )
    return_to_login: str = '[data-test-id="error-page"] button, a[href*="/login"]'
    return_to_login_texts: tuple[str, ...] = ("Вернуться ко входу", "Войти заново", "На страницу входа")

    # History list
    operations_list: str = '[data-test-id="operations-list"], [data-test-id="history-list"]'
    operation_row: str = '[data-test-id="operation-item"], [data-test-id="history-operation"]'
    load_more_texts: tuple[str, ...] = ("Показать ещё", "Загрузить ещё")

    # Detail view
    detail_header: str = 'main h1, [data-test-id="operation-details"] h1'
    detail_root: str = 'main, [data-test-id="operation-details"]'
    detail_section_texts: tuple[str, ...] = ("Детали операции", "Детали транзакции", "Подробности")
