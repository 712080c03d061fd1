"""
Module providing an exporter that posts reports to a Slack channel.
"""

import asyncio
import logging

import httpx

from ..exceptions import ExportError

from .base import DATE_FORMAT, NO_RESULTS_TEXT, SUMMARY_SEVERITIES, Exporter


logger = logging.getLogger(__name__)


#: The Slack Web API method used to post messages
POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

#: The maximum length of the text in a section block
MAX_BLOCK_TEXT = 3000
TRUNCATION_MARKER = "...\n<TRUNCATED>"

#: The maximum number of vulnerability blocks in a message
#: Slack allows 50 blocks per message, including the header and divider
MAX_VULNERABILITY_BLOCKS = 48

#: The minimum delay between messages, to stay inside Slack's rate limit
POST_INTERVAL = 1.0


def text_block(text):
    """
    Return a section block for the given mrkdwn text, truncated to Slack's limit.
    """
    if len(text) > MAX_BLOCK_TEXT:
        text = text[:MAX_BLOCK_TEXT - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
    return { "type": "section", "text": { "type": "mrkdwn", "text": text } }


def divider_block():
    return { "type": "divider" }


def header_text(report):
    lines = [f'Container image security digest: {report.image_uri}']
    if report.error:
        lines.append(f'*Scan failed*: {report.error.title}: {report.error.detail}')
        return '\n'.join(lines)
    if not report.findings_available:
        lines.append(f'*{NO_RESULTS_TEXT}*')
        return '\n'.join(lines)
    lines.append('Summary:')
    for severity in SUMMARY_SEVERITIES:
        count = report.severity_counts.get(severity)
        if count:
            lines.append(f'*{severity}*: *{count}*')
    lines.append(f'Reporting Threshold: *{report.severity_threshold.value}*')
    lines.append('Details:')
    return '\n'.join(lines)


def vulnerability_text(vulnerability):
    if vulnerability.uri:
        title = f'<{vulnerability.uri}|{vulnerability.name}>'
    else:
        title = vulnerability.name
    lines = [
        f'*{vulnerability.severity}*: {title}',
        f'*Package*: {vulnerability.package_name}:{vulnerability.package_version}',
    ]
    if vulnerability.score:
        lines.append(f'*CVSS2 Score*: {vulnerability.score:.1f}')
    if vulnerability.vectors:
        lines.append(f'*CVSS2 Vectors*: {vulnerability.vectors}')
    lines.append(f'*Description*: {vulnerability.description}')
    return '\n'.join(lines)


def image_blocks(report):
    """
    Return the blocks for the message describing a single image.
    """
    blocks = [text_block(header_text(report))]
    if not report.error and report.findings_available:
        vulnerabilities = report.reportable_vulnerabilities[:MAX_VULNERABILITY_BLOCKS]
        blocks.extend(text_block(vulnerability_text(v)) for v in vulnerabilities)
        if not vulnerabilities:
            blocks.append(text_block(
                f'No vulnerabilities at {report.severity_threshold.value} or above detected!'
            ))
    blocks.append(divider_block())
    return blocks


class SlackExporter(Exporter):
    """
    Exporter that posts one message per image to a Slack channel.
    """
    name = "slack"

    def __init__(self, token, channel_id, transport = None, post_interval = POST_INTERVAL):
        self.token = token
        self.channel_id = channel_id
        self.transport = transport
        self.post_interval = post_interval

    async def _post_message(self, client, blocks, text):
        # Delay every message in order to avoid exceeding Slack's rate limit
        await asyncio.sleep(self.post_interval)
        try:
            response = await client.post(
                POST_MESSAGE_URL,
                json = dict(channel = self.channel_id, blocks = blocks, text = text)
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ExportError(f'unable to post message to Slack: {exc}') from exc
        if not body.get('ok'):
            raise ExportError(f"Slack rejected message: {body.get('error', 'unknown error')}")
        logger.info(f"Message successfully sent to channel {body.get('channel')} at {body.get('ts')}")

    async def export(self, report):
        headers = { 'Authorization': f'Bearer {self.token}' }
        async with httpx.AsyncClient(transport = self.transport, headers = headers) as client:
            if report.reports:
                title = (
                    'Kubernetes container security updates as of '
                    f'*{report.generated_at.strftime(DATE_FORMAT)}*'
                )
                await self._post_message(client, [text_block(title)], title)
            for image_report in report.reports:
                logger.info(f'Generating report for image {image_report.image_uri}...')
                await self._post_message(
                    client,
                    image_blocks(image_report),
                    f'Container image security digest: {image_report.image_uri}'
                )
