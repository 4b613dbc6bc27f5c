"""Tests for payment notice drafts: generation, edits, sending and the mailer."""
from datetime import date

import httpx
import pytest

from rakuado.errors import ConflictError, DeliveryError, ValidationError
from rakuado.services import mailer as mailer_module
from rakuado.services.mailer import EmailMessage, MailtrapMailer
from rakuado.services.partner_emails import (
    NO_DATA_MESSAGE, generate_drafts_for_period, get_draft, render_payment_notice,
    send_batch, send_draft, update_draft,
)
from rakuado.services.periods import PayPeriod, date_range, iso

JANUARY = PayPeriod(date(2026, 1, 21), date(2026, 2, 20))  # 31 days


async def _generate(session):
    result = await generate_drafts_for_period(session, JANUARY)
    return {d["partnerName"]: d["draftId"] for d in result["draftsCreated"]}, result


class TestGenerate:

    async def test_one_draft_per_partner(self, session, make_partner, make_record):
        for day in date_range(JANUARY.start, JANUARY.end):
            await make_record("daily", iso(day), views=3, sites={"blog.example.jp": {"views": 3, "clicks": 0}})
        await make_partner()
        await make_partner(domain="paused.jp", name="Paused", status="inactive")

        ids, result = await _generate(session)

        assert result["summary"] == {"created": 2, "updated": 0, "skipped": 0}
        active = await get_draft(session, ids["Example Blog"])
        assert active.status == "draft"
        assert active.payment_amount == 10000
        assert active.period_month == "2026年1月"
        paused = await get_draft(session, ids["Paused"])
        assert paused.status == "no_data"
        assert paused.has_data is False
        assert paused.error_message == NO_DATA_MESSAGE

    async def test_regenerate_updates_but_skips_sent(self, session, make_partner, mailer):
        await make_partner()
        await make_partner(domain="second.jp", name="Second", email="second@example.jp")
        ids, _ = await _generate(session)
        await send_draft(session, ids["Example Blog"], mailer)

        result = await generate_drafts_for_period(session, JANUARY)

        assert result["summary"] == {"created": 0, "updated": 1, "skipped": 1}
        assert result["draftsSkipped"][0]["reason"] == "Already sent"
        assert (await get_draft(session, ids["Example Blog"])).status == "sent"


class TestUpdate:

    async def test_inactive_days_recompute_amount(self, session, make_partner):
        await make_partner()
        ids, _ = await _generate(session)

        draft = await update_draft(session, ids["Example Blog"], inactive_days=3, notes="3日間掲載停止")

        assert draft.active_days == 28
        assert draft.payment_amount == 9032
        assert draft.notes == "3日間掲載停止"
        assert draft.status == "draft"

    async def test_override_refused_without_payable_days(self, session, make_partner):
        await make_partner(status="inactive")
        ids, _ = await _generate(session)

        with pytest.raises(ConflictError):
            await update_draft(session, ids["Example Blog"], inactive_days=0)

        draft = await get_draft(session, ids["Example Blog"])
        assert draft.has_data is False
        assert draft.status == "no_data"

    async def test_notes_editable_on_no_data_draft(self, session, make_partner):
        await make_partner(status="inactive")
        ids, _ = await _generate(session)
        draft = await update_draft(session, ids["Example Blog"], notes="停止中")
        assert draft.notes == "停止中"
        assert draft.status == "no_data"

    async def test_inactive_days_out_of_range(self, session, make_partner):
        await make_partner()
        ids, _ = await _generate(session)
        with pytest.raises(ValidationError):
            await update_draft(session, ids["Example Blog"], inactive_days=40)

    async def test_sent_draft_is_frozen(self, session, make_partner, mailer):
        await make_partner()
        ids, _ = await _generate(session)
        await update_draft(session, ids["Example Blog"], inactive_days=0)
        await send_draft(session, ids["Example Blog"], mailer)

        with pytest.raises(ConflictError):
            await update_draft(session, ids["Example Blog"], inactive_days=10)
        assert (await get_draft(session, ids["Example Blog"])).payment_amount == 10000


class TestSend:

    async def test_send_marks_sent(self, session, make_partner, mailer):
        await make_partner()
        ids, _ = await _generate(session)

        draft = await send_draft(session, ids["Example Blog"], mailer)

        assert draft.status == "sent"
        assert draft.sent_at is not None
        assert mailer.sent[0].to == "owner@example.jp"
        assert "2026年1月" in mailer.sent[0].subject
        with pytest.raises(ConflictError):
            await send_draft(session, ids["Example Blog"], mailer)
        assert len(mailer.sent) == 1

    async def test_missing_email_marks_error(self, session, make_partner, mailer):
        await make_partner(email="")
        ids, _ = await _generate(session)

        with pytest.raises(ValidationError):
            await send_draft(session, ids["Example Blog"], mailer)

        draft = await get_draft(session, ids["Example Blog"])
        assert draft.status == "error"
        assert draft.error_message == "Partner email not configured"
        assert mailer.sent == []

    async def test_no_data_draft_cannot_be_sent(self, session, make_partner, mailer):
        await make_partner(status="stopped")
        ids, _ = await _generate(session)
        with pytest.raises(ConflictError):
            await send_draft(session, ids["Example Blog"], mailer)

    async def test_failed_delivery_can_be_retried(self, session, make_partner, mailer):
        await make_partner()
        ids, _ = await _generate(session)
        mailer.fail_for.add("owner@example.jp")

        with pytest.raises(DeliveryError):
            await send_draft(session, ids["Example Blog"], mailer)
        draft = await get_draft(session, ids["Example Blog"])
        assert draft.status == "error"
        assert "Mailbox unavailable" in draft.error_message

        mailer.fail_for.clear()
        draft = await send_draft(session, ids["Example Blog"], mailer)
        assert draft.status == "sent"
        assert draft.error_message is None

    async def test_batch_continues_past_failures(self, session, make_partner, mailer):
        await make_partner(name="A", domain="a.jp", email="a@example.jp")
        await make_partner(name="B", domain="b.jp", email="b@example.jp")
        await make_partner(name="C", domain="c.jp", email="")
        await make_partner(name="D", domain="d.jp", status="inactive")
        ids, _ = await _generate(session)
        mailer.fail_for.add("a@example.jp")

        result = await send_batch(
            session, [ids["A"], ids["B"], ids["C"], ids["D"], ids["B"], "missing"], mailer, delay=0,
        )

        assert [s["partnerName"] for s in result.sent] == ["B"]
        assert sorted(f["draftId"] for f in result.failed) == sorted([ids["A"], ids["C"], "missing"])
        assert result.skipped == [{"draftId": ids["D"], "partnerName": "D", "reason": "No data available"}]
        assert [m.to for m in mailer.sent] == ["b@example.jp"]
        assert (await get_draft(session, ids["A"])).status == "error"

    async def test_unexpected_mailer_fault_marks_error(self, session, make_partner, mailer):
        await make_partner()
        ids, _ = await _generate(session)
        mailer.crash_for.add("owner@example.jp")

        with pytest.raises(DeliveryError):
            await send_draft(session, ids["Example Blog"], mailer)

        draft = await get_draft(session, ids["Example Blog"])
        assert draft.status == "error"
        assert draft.error_message == "connection reset mid-request"

    async def test_batch_survives_unexpected_mailer_fault(self, session, make_partner, mailer):
        await make_partner(name="A", domain="a.jp", email="a@example.jp")
        await make_partner(name="B", domain="b.jp", email="b@example.jp")
        ids, _ = await _generate(session)
        mailer.crash_for.add("a@example.jp")

        result = await send_batch(session, [ids["A"], ids["B"]], mailer, delay=0)

        assert [s["partnerName"] for s in result.sent] == ["B"]
        assert result.failed == [{"draftId": ids["A"], "partnerName": "A",
                                  "error": "connection reset mid-request"}]
        assert [m.to for m in mailer.sent] == ["b@example.jp"]
        assert (await get_draft(session, ids["A"])).status == "error"
        assert (await get_draft(session, ids["B"])).status == "sent"

    async def test_batch_requires_ids(self, session, mailer):
        with pytest.raises(ValidationError):
            await send_batch(session, [], mailer)


class TestNotice:

    async def test_notice_rendered_from_templates(self, session, make_partner, make_record):
        for day in date_range(JANUARY.start, JANUARY.end):
            await make_record("daily", iso(day), views=1, sites={"blog.example.jp": {"views": 1, "clicks": 0}})
        await make_partner(monthly_amount=123456)
        ids, _ = await _generate(session)

        message = render_payment_notice(await get_draft(session, ids["Example Blog"]))

        assert message.subject == "【Rakuado】2026年1月分 お支払い金額のお知らせ"
        assert "お支払い金額: 123,456円" in message.text
        assert "掲載日数: 31日" in message.text
        assert "備考" not in message.text
        assert message.html.startswith("<!DOCTYPE html>")
        assert "<title>【Rakuado】2026年1月分 お支払い金額のお知らせ</title>" in message.html
        assert "<strong>123,456円</strong>" in message.html
        assert "みずほ銀行 本店" in message.html

    async def test_render_escapes_html(self, session, make_partner):
        await make_partner(name="<b>Blog</b>", notes="振込 & 確認")
        ids, _ = await _generate(session)
        message = render_payment_notice(await get_draft(session, ids["<b>Blog</b>"]))
        assert "&lt;b&gt;Blog&lt;/b&gt;" in message.html
        assert "振込 &amp; 確認" in message.html
        assert "<b>Blog</b> 様" in message.text
        assert "お支払い金額: 0円" in message.text


class TestMailtrapMailer:

    def _message(self):
        return EmailMessage(to="owner@example.jp", subject="s", text="t", html="<p>t</p>")

    async def test_missing_api_key(self):
        mailer = MailtrapMailer("", "https://send.example", "noreply@rakuado.com", "Rakuado")
        with pytest.raises(DeliveryError):
            await mailer.send(self._message())

    async def test_posts_to_send_api(self, monkeypatch):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"success": True})

        real_client = httpx.AsyncClient
        monkeypatch.setattr(mailer_module.httpx, "AsyncClient",
                            lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw))

        mailer = MailtrapMailer("secret", "https://send.example/", "noreply@rakuado.com", "Rakuado")
        await mailer.send(self._message())

        assert str(seen[0].url) == "https://send.example/api/send"
        assert seen[0].headers["Authorization"] == "Bearer secret"

    async def test_provider_rejection(self, monkeypatch):
        real_client = httpx.AsyncClient
        transport = httpx.MockTransport(lambda request: httpx.Response(401, text="Unauthorized"))
        monkeypatch.setattr(mailer_module.httpx, "AsyncClient",
                            lambda **kw: real_client(transport=transport, **kw))

        mailer = MailtrapMailer("bad", "https://send.example", "noreply@rakuado.com", "Rakuado")
        with pytest.raises(DeliveryError, match="401"):
            await mailer.send(self._message())


class TestDraftApi:

    async def test_generate_list_and_edit(self, admin_client, make_partner):
        await make_partner()
        generated = (await admin_client.post("/api/partner-emails/generate", json={"period": "current"})).json()
        assert generated["summary"]["created"] == 1

        drafts = (await admin_client.get("/api/partner-emails/drafts")).json()["drafts"]
        draft_id = drafts[0]["id"]
        resp = await admin_client.put(f"/api/partner-emails/draft/{draft_id}", json={"notes": "確認済み"})
        assert resp.status_code == 200
        assert resp.json()["draft"]["notes"] == "確認済み"

    async def test_edit_sent_draft_rejected(self, admin_client, make_partner, mailer):
        await make_partner()
        await admin_client.post("/api/partner-emails/generate", json={})
        draft = (await admin_client.get("/api/partner-emails/drafts")).json()["drafts"][0]
        sent = await admin_client.post(f"/api/partner-emails/send/{draft['id']}")
        assert sent.json()["draft"]["status"] == "sent"

        resp = await admin_client.put(f"/api/partner-emails/draft/{draft['id']}", json={"inactiveDays": 5})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_state"
        after = (await admin_client.get(f"/api/partner-emails/draft/{draft['id']}")).json()["draft"]
        assert after["paymentAmount"] == draft["paymentAmount"]

        resend = await admin_client.post(f"/api/partner-emails/send/{draft['id']}")
        assert resend.status_code == 400

    async def test_send_batch_endpoint(self, admin_client, make_partner, mailer):
        await make_partner()
        await admin_client.post("/api/partner-emails/generate", json={})
        draft = (await admin_client.get("/api/partner-emails/drafts")).json()["drafts"][0]
        body = (await admin_client.post("/api/partner-emails/send-batch",
                                        json={"draftIds": [draft["id"]]})).json()
        assert len(body["results"]["sent"]) == 1

    async def test_delete_draft(self, admin_client, make_partner):
        await make_partner()
        await admin_client.post("/api/partner-emails/generate", json={})
        draft = (await admin_client.get("/api/partner-emails/drafts")).json()["drafts"][0]
        await admin_client.delete(f"/api/partner-emails/draft/{draft['id']}")
        assert (await admin_client.get(f"/api/partner-emails/draft/{draft['id']}")).status_code == 404
