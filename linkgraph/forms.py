"""Forms for the linkgraph app.

The admin UI posts JSON payloads; the views feed them through these
forms so validation follows the usual Django rules and errors come back
as field messages.
"""

from __future__ import annotations

from typing import Dict, List

from django import forms

from .models import Post


class InternalLinksForm(forms.Form):
    """Hand-picked targets to link into a single post."""

    link_ids = forms.ModelMultipleChoiceField(
        queryset=Post.objects.filter(published=True),
        label='Posts to link',
        help_text='Published posts to link to, in order of preference.',
        error_messages={'required': 'linkIds must be a non-empty array.'},
    )
    anchor_texts = forms.JSONField(
        required=False,
        label='Anchor texts',
        help_text='Optional mapping of post id to the phrase that should become the link.',
    )

    def clean_link_ids(self) -> List[Post]:
        """Return the selected posts in the order they were submitted."""

        selected = {str(post.pk): post for post in self.cleaned_data['link_ids']}
        raw = self.data.get('link_ids') or []
        if isinstance(raw, (str, int)):
            raw = [raw]
        ordered: List[Post] = []
        for value in raw:
            post = selected.pop(str(value), None)
            if post is not None:
                ordered.append(post)
        return ordered

    def clean_anchor_texts(self) -> Dict[str, str]:
        value = self.cleaned_data.get('anchor_texts')
        if not value:
            return {}
        if not isinstance(value, dict):
            raise forms.ValidationError('anchorTexts must map post ids to anchor text.')
        cleaned: Dict[str, str] = {}
        for key, text in value.items():
            if text is None:
                continue
            if not isinstance(text, str):
                raise forms.ValidationError(f'Anchor text for post {key} must be a string.')
            if text.strip():
                cleaned[str(key)] = text.strip()
        return cleaned


class AutoLinkForm(forms.Form):
    """Scope and budget for an auto-link run."""

    post = forms.ModelChoiceField(
        queryset=Post.objects.filter(published=True),
        required=False,
        label='Post',
        help_text='Leave empty to process every published post.',
    )
    max_links_per_post = forms.IntegerField(
        required=False,
        min_value=1,
        max_value=25,
        label='Maximum links per post',
        help_text='The maximum number of new links to insert into each post (default 3).',
    )


class ProcessContentForm(forms.Form):
    """Freshly rewritten HTML that should be cleaned and auto-linked before saving."""

    content = forms.CharField(strip=False, label='Content')
    title = forms.CharField(required=False, max_length=300, label='Title')
    post = forms.ModelChoiceField(
        queryset=Post.objects.all(),
        required=False,
        label='Post',
        help_text='The post being rewritten, when it already exists.',
    )
    max_links = forms.IntegerField(required=False, min_value=1, max_value=25, label='Maximum links')
