# portfolio/app/images/forms.py
from django import forms
from .models import ImageCategory, MediaImage

INPUT_CLASS = 'w-full p-2 border border-gray-300 rounded-md shadow-sm focus:outline-none focus:ring-2 focus:ring-indigo-500'


class ImageUploadForm(forms.Form):
    title = forms.CharField(
        label="Image Title (Optional Prefix)",
        required=False,
        max_length=200,
        widget=forms.TextInput(attrs={'class': INPUT_CLASS})
    )
    images = forms.FileField(
        label="Image File(s)",
        required=True,
        widget=forms.FileInput(attrs={
            'class': 'w-full p-2 border border-gray-300 rounded-md shadow-sm'
        })
    )
    alt_text = forms.CharField(
        label="Alt Text (Optional)",
        required=False,
        widget=forms.TextInput(attrs={'class': INPUT_CLASS})
    )
    category = forms.ModelChoiceField(
        queryset=ImageCategory.objects.all(),
        required=False,
        label="Category",
        widget=forms.Select(attrs={'class': INPUT_CLASS})
    )
    status = forms.ChoiceField(
        choices=MediaImage.ImageStatus.choices,
        required=False,
        initial=MediaImage.ImageStatus.PUBLISHED,
        widget=forms.Select(attrs={'class': INPUT_CLASS})
    )

    def clean_status(self):
        return self.cleaned_data.get('status') or MediaImage.ImageStatus.PUBLISHED


class ImageEditForm(forms.ModelForm):
    """
    Metadata edits only. Series membership is managed from the series
    endpoints and is deliberately absent here.
    """
    class Meta:
        model = MediaImage
        fields = ['title', 'description', 'alt_text', 'category', 'featured', 'order', 'status']
        widgets = {
            'title': forms.TextInput(attrs={'class': INPUT_CLASS}),
            'description': forms.Textarea(attrs={'rows': 3, 'class': INPUT_CLASS}),
            'alt_text': forms.TextInput(attrs={'class': INPUT_CLASS}),
            'category': forms.Select(attrs={'class': INPUT_CLASS}),
            'order': forms.NumberInput(attrs={'class': INPUT_CLASS}),
            'status': forms.Select(attrs={'class': INPUT_CLASS}),
        }


class CategoryForm(forms.ModelForm):
    class Meta:
        model = ImageCategory
        fields = ['name', 'slug', 'description', 'order']
        widgets = {
            'name': forms.TextInput(attrs={'class': INPUT_CLASS}),
            'slug': forms.TextInput(attrs={'class': INPUT_CLASS}),
            'description': forms.Textarea(attrs={'rows': 3, 'class': INPUT_CLASS}),
            'order': forms.NumberInput(attrs={'class': INPUT_CLASS}),
        }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fields['order'].required = False

    def clean_order(self):
        return self.cleaned_data.get('order') or 0
