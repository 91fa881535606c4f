from setuptools import setup, find_packages

setup(
    name='MoodleCourseUpload',
    version='0.1.0',
    packages=find_packages(exclude=['tests', 'tests.*', 'examples']),
    install_requires=[
        'requests',
        'pymysql',
        'cryptography',
        'keyring',
    ],
    extras_require={
        'test': ['pytest'],
    },
    description='Bulk create, update and template Moodle courses from a CSV file',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    classifiers=[
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.11',
)
