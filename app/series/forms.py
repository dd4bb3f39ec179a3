# portfolio/app/series/forms.py
from django import forms

from images.forms import INPUT_CLASS
from images.models import MediaImage
from .models import Series


class SeriesForm(forms.ModelForm):
    """
    Series metadata. The member list is not a form field; the cover may only
    name an image that is already a member, which the relationship engine
    enforces when the form is applied.
    """
    cover_image = forms.ModelChoiceField(
        queryset=MediaImage.objects.all(),
        required=False,
        widget=forms.Select(attrs={'class': INPUT_CLASS})
    )

    class Meta:
        model = Series
        fields = ['title', 'slug', 'description', 'cover_image', 'category', 'order', 'featured', 'status']
        widgets = {
            'title': forms.TextInput(attrs={'class': INPUT_CLASS}),
            'slug': forms.TextInput(attrs={'class': INPUT_CLASS}),
            'description': forms.Textarea(attrs={'rows': 4, 'class': INPUT_CLASS}),
            'category': forms.Select(attrs={'class': INPUT_CLASS}),
            'order': forms.NumberInput(attrs={'class': INPUT_CLASS}),
            'status': forms.Select(attrs={'class': INPUT_CLASS}),
        }

    def clean_title(self):
        title = self.cleaned_data['title'].strip()
        if len(title) < 2:
            raise forms.ValidationError("Title must be at least 2 characters.")
        return title

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['order'].required = False
        self.fields['status'].required = False

    def clean_order(self):
        return self.cleaned_data.get('order') or 0

    def clean_status(self):
        return self.cleaned_data.get('status') or Series.SeriesStatus.DRAFT
