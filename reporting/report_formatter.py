"""
report_formatter.py
--------------------
Turns consolidated subscriptions into chat-sized text messages.

The messaging transport is a collaborator: it only needs a list of strings
to send in order. The first message is always the summary (count and
estimated monthly total); the following ones hold the detail lines, either
grouped by category or as a flat list split into chunks.
"""

from collections import OrderedDict
from typing import Dict, List, Optional

from config.config_loader import get_filtering_config, get_report_config
from core.models import ConsolidatedSubscription

NO_RESULTS_MESSAGE = "No subscriptions were found."


class ReportFormatter:
    """
    Usage:
        formatter = ReportFormatter()
        for message in formatter.format_report(subscriptions, category_sort=True):
            send(message)
    """

    def __init__(self):
        self.config = get_report_config()
        self.suffix = self.config["currency_suffix"]
        self.other_label = get_filtering_config()["default_category"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def format_report(
        self,
        subscriptions: List[ConsolidatedSubscription],
        detailed: bool = False,
        category_sort: bool = False,
    ) -> List[str]:
        """
        Args:
            subscriptions: Output of SubscriptionPipeline.run().
            detailed: Include date, probability and rationale lines.
            category_sort: Section the list by category, with per-category totals.

        Returns:
            Messages to send in order. Never empty.
        """
        if not subscriptions:
            return [NO_RESULTS_MESSAGE]

        by_category = self._group_by_category(subscriptions)
        messages = [self._summary(subscriptions, by_category if category_sort else None)]

        if category_sort:
            index = 1
            for category, subs in by_category.items():
                subs = sorted(subs, key=lambda s: -s.average_amount)
                lines = [f"[{category}] ({len(subs)})"]
                for sub in subs:
                    lines.append(self._format_line(sub, index, detailed))
                    index += 1
                messages.append("\n".join(lines))
            return messages

        ordered = sorted(subscriptions, key=lambda s: -s.average_amount)
        chunk_size = self.config["max_items_per_message"]
        for start in range(0, len(ordered), chunk_size):
            chunk = ordered[start:start + chunk_size]
            messages.append(
                "\n\n".join(
                    self._format_line(sub, start + offset + 1, detailed)
                    for offset, sub in enumerate(chunk)
                )
            )
        return messages

    def savings_advice(self, subscriptions: List[ConsolidatedSubscription]) -> Optional[str]:
        """
        Savings tips for users with several subscriptions, else None.
        """
        if len(subscriptions) < self.config["min_subscriptions_for_advice"]:
            return None

        tips = ["Subscription savings advice:"]

        counts: Dict[str, int] = {}
        duplicates: List[str] = []
        for sub in subscriptions:
            key = "".join(sub.service_name.lower().split())
            counts[key] = counts.get(key, 0) + 1
            if counts[key] == 2:
                duplicates.append(sub.service_name)
        if duplicates:
            tips.append(f"- Possibly duplicated services: {', '.join(duplicates)}")

        streaming_keywords = self.config["streaming_keywords"]
        streaming = [
            s for s in subscriptions
            if any(k in s.service_name.lower() for k in streaming_keywords)
        ]
        if len(streaming) > self.config["max_streaming_services"]:
            tips.append(
                f"- {len(streaming)} video streaming services found. Rotating them month "
                "by month instead of keeping all at once can cut costs."
            )

        tips.append("- Review how often you use each service and cancel the ones you rarely use.")
        tips.append("- Yearly plans are often 10-20% cheaper than monthly plans for services you keep.")
        tips.append("- Some paid services have free tiers or free alternatives that may be enough.")
        return "\n".join(tips)

    def estimated_monthly_total(self, subscriptions: List[ConsolidatedSubscription]) -> float:
        return sum(s.average_amount for s in subscriptions)

    # -------------------------------------------------------------------------
    # INTERNAL
    # -------------------------------------------------------------------------

    def _group_by_category(
        self, subscriptions: List[ConsolidatedSubscription]
    ) -> "OrderedDict[str, List[ConsolidatedSubscription]]":
        """Categories in first-seen order, with the default category last."""
        grouped: "OrderedDict[str, List[ConsolidatedSubscription]]" = OrderedDict()
        for sub in subscriptions:
            grouped.setdefault(sub.category or self.other_label, []).append(sub)
        if self.other_label in grouped:
            grouped.move_to_end(self.other_label)
        return grouped

    def _summary(self, subscriptions, by_category) -> str:
        total = self.estimated_monthly_total(subscriptions)
        lines = [
            f"Found {len(subscriptions)} subscription(s)",
            f"Estimated monthly total: {self._money(total)}",
        ]
        if by_category:
            lines.append("")
            lines.append("Totals by category:")
            for category, subs in by_category.items():
                lines.append(f"{category}: {self._money(sum(s.average_amount for s in subs))}")
        return "\n".join(lines)

    def _format_line(self, sub: ConsolidatedSubscription, index: int, detailed: bool) -> str:
        amount = self._money(sub.average_amount)
        probability = f"{round(sub.probability * 100)}%"
        count = f" [seen {sub.occurrence_count} times]" if sub.occurrence_count > 1 else ""

        if detailed:
            return (
                f"{index}. {sub.service_name}\n"
                f"   Monthly: {amount}{count}\n"
                f"   Latest: {sub.most_recent_date or '-'}\n"
                f"   Probability: {probability}\n"
                f"   Reason: {sub.rationale}"
            )
        date = f" ({sub.most_recent_date})" if sub.most_recent_date else ""
        return f"{index}. {sub.service_name}\n   {amount}{date}{count}\n   {probability}"

    def _money(self, amount: float) -> str:
        return f"{round(amount):,}{self.suffix}"
