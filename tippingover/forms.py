"""Forms for the tippingover app.

``TooltipQueryForm`` validates the parameters of the asynchronous
tooltip endpoint and turns them into a :class:`TooltipQuery`.
"""

from __future__ import annotations

from django import forms

from .engine.types import QUERY_OPTIONS, TooltipQuery


class TooltipQueryForm(forms.Form):
    """Validate ``target``, ``direct``, ``tooltip`` and the pipe-delimited ``options``."""

    target = forms.CharField(required=False, max_length=512, strip=True)
    direct = forms.CharField(required=False, max_length=512, strip=True)
    tooltip = forms.CharField(required=False, max_length=512, strip=True)
    options = forms.CharField(
        required=False,
        help_text='Pipe-separated subset of: ' + ', '.join(sorted(QUERY_OPTIONS)),
    )

    def clean_options(self) -> frozenset[str]:
        raw_value = self.cleaned_data.get('options', '') or ''
        options = {piece.strip() for piece in raw_value.split('|') if piece.strip()}
        unknown = sorted(options - QUERY_OPTIONS)
        if unknown:
            raise forms.ValidationError(
                f"Unrecognized value for parameter 'options': {', '.join(unknown)}",
                code='unknown_option',
            )
        return frozenset(options)

    def clean(self) -> dict[str, object]:  # type: ignore[override]
        cleaned_data = super().clean()
        target = cleaned_data.get('target')
        tooltip = cleaned_data.get('tooltip')
        options = cleaned_data.get('options') or frozenset()
        if not target and not tooltip:
            raise forms.ValidationError(
                'The target parameter must be set when no tooltip parameter is given.',
                code='missingparam',
            )
        if 'cat' in options and not target:
            raise forms.ValidationError(
                'The cat option requires a target parameter.',
                code='no_target_for_cat_filter',
            )
        return cleaned_data

    def to_query(self) -> TooltipQuery:
        return TooltipQuery(
            target=self.cleaned_data.get('target') or None,
            direct=self.cleaned_data.get('direct') or None,
            tooltip=self.cleaned_data.get('tooltip') or None,
            options=self.cleaned_data.get('options') or frozenset(),
        )

    def error_payload(self) -> dict[str, dict[str, str]]:
        """Describe the first validation error as ``{"error": {"code", "info"}}``."""

        for errors in self.errors.as_data().values():
            for error in errors:
                return {'error': {'code': error.code or 'invalid', 'info': ' '.join(error.messages)}}
        return {'error': {'code': 'invalid', 'info': 'Invalid tooltip query.'}}
