import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Discussion',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=500, validators=[django.core.validators.MinLengthValidator(10)])),
                ('description', models.TextField(validators=[django.core.validators.MinLengthValidator(20)])),
                ('category', models.CharField(choices=[('CONSTITUTIONAL_LAW', 'Constitutional Law'), ('CRIMINAL_LAW', 'Criminal Law'), ('CIVIL_LAW', 'Civil Law'), ('CORPORATE_LAW', 'Corporate Law'), ('FAMILY_LAW', 'Family Law'), ('TAX_LAW', 'Tax Law'), ('INTELLECTUAL_PROPERTY', 'Intellectual Property'), ('CYBER_LAW', 'Cyber Law'), ('CONSUMER_LAW', 'Consumer Law'), ('ARBITRATION', 'Arbitration'), ('PROPERTY_LAW', 'Property Law'), ('LEGAL_ETHICS', 'Legal Ethics'), ('INTERNATIONAL_LAW', 'International Law')], db_index=True, max_length=40)),
                ('discussion_type', models.CharField(choices=[('GENERAL', 'General'), ('CASE_ANALYSIS', 'Case Analysis'), ('LEGAL_QUERY', 'Legal Query'), ('OPINION_POLL', 'Opinion Poll')], default='GENERAL', max_length=20)),
                ('tags', models.JSONField(blank=True, default=list)),
                ('is_public', models.BooleanField(default=True)),
                ('reply_count', models.PositiveIntegerField(default=0)),
                ('upvote_count', models.PositiveIntegerField(default=0)),
                ('save_count', models.PositiveIntegerField(default=0)),
                ('follower_count', models.PositiveIntegerField(default=0)),
                ('view_count', models.PositiveIntegerField(default=0)),
                ('is_resolved', models.BooleanField(db_index=True, default=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('last_activity_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('author', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='discussions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['is_public', '-created_at'], name='discussion_public_created_idx'),
                    models.Index(fields=['is_public', '-last_activity_at'], name='discussion_public_active_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Reply',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('content', models.TextField(validators=[django.core.validators.MinLengthValidator(1)])),
                ('depth', models.PositiveSmallIntegerField(default=0)),
                ('upvote_count', models.PositiveIntegerField(default=0)),
                ('reply_count', models.PositiveIntegerField(default=0)),
                ('is_edited', models.BooleanField(default=False)),
                ('is_deleted', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('author', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='discussion_replies', to=settings.AUTH_USER_MODEL)),
                ('discussion', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='replies', to='discussions.discussion')),
                ('parent', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='children', to='discussions.reply')),
            ],
            options={
                'verbose_name_plural': 'replies',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['discussion', 'created_at'], name='reply_discussion_created_idx'),
                    models.Index(fields=['parent', 'created_at'], name='reply_parent_created_idx'),
                ],
            },
        ),
        migrations.AddField(
            model_name='discussion',
            name='best_answer',
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to='discussions.reply'),
        ),
        migrations.AddConstraint(
            model_name='discussion',
            constraint=models.CheckConstraint(condition=models.Q(('best_answer__isnull', True), ('is_resolved', True), _connector='OR'), name='best_answer_implies_resolved'),
        ),
        migrations.CreateModel(
            name='Upvote',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('discussion', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='upvotes', to='discussions.discussion')),
                ('reply', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='upvotes', to='discussions.reply')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='discussion_upvotes', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'constraints': [
                    models.CheckConstraint(condition=models.Q(models.Q(('discussion__isnull', True), ('reply__isnull', False)), models.Q(('discussion__isnull', False), ('reply__isnull', True)), _connector='OR'), name='upvote_one_target'),
                    models.UniqueConstraint(condition=models.Q(('reply__isnull', False)), fields=('user', 'reply'), name='unique_reply_upvote_per_user'),
                    models.UniqueConstraint(condition=models.Q(('discussion__isnull', False)), fields=('user', 'discussion'), name='unique_discussion_upvote_per_user'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DiscussionFollower',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('discussion', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='followers', to='discussions.discussion')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='followed_discussions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('discussion', 'user'), name='unique_follower_per_discussion'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Bookmark',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('entity_type', models.CharField(choices=[('POST', 'Post'), ('DISCUSSION', 'Discussion'), ('AI_RESULT', 'AI Result'), ('LAW_SECTION', 'Law Section')], max_length=20)),
                ('entity_id', models.CharField(max_length=64)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='bookmarks', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['entity_type', 'entity_id'], name='bookmark_entity_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'entity_type', 'entity_id'), name='unique_bookmark_per_user_per_entity'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DiscussionView',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True)),
                ('viewed_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('discussion', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='views', to='discussions.discussion')),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name='discussion_views', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('user__isnull', False)), fields=('discussion', 'user'), name='unique_view_per_user'),
                    models.UniqueConstraint(condition=models.Q(('user__isnull', True)), fields=('discussion', 'ip_address'), name='unique_view_per_guest_ip'),
                ],
            },
        ),
    ]
